"""Stargate Timeline command line entrypoints."""
