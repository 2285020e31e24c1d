"""Upstream imagery provider clients."""

from .sentinel_client import SentinelHubClient

__all__ = ["SentinelHubClient"]
