from __future__ import annotations

import logging
from datetime import date, timedelta
from pathlib import Path

import typer

from stargate_cache import AppConfig, load_config
from stargate_cache.imagery import SentinelHubClient
from stargate_cache.schemas import BoundingBox, ImageEntry, coerce_date, now_utc
from stargate_cache.storage import ImageRejectedError, ImageRepository
from stargate_cache.sync import render_sync_table, run_sync

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

STATUS_LOOKBACK_DAYS = 548

app = typer.Typer(help="Stargate Timeline imagery cache CLI")
debug_app = typer.Typer(help="Debug commands")
app.add_typer(debug_app, name="debug")


def _config_option() -> typer.models.OptionInfo:
    return typer.Option(
        None,
        "--config",
        help="Optional YAML/JSON config file path.",
        exists=True,
        dir_okay=False,
        readable=True,
    )


def _cache_dir_option() -> typer.models.OptionInfo:
    return typer.Option(
        None,
        "--cache-dir",
        help="Cache directory (overrides cache.directory from config).",
    )


@app.command("sync")
def sync_images(
    start: str = typer.Option(..., "--start", help="Range start date (YYYY-MM-DD)."),
    end: str = typer.Option(..., "--end", help="Range end date (YYYY-MM-DD)."),
    bbox: str | None = typer.Option(
        None,
        "--bbox",
        help="Bounding box min_lon,min_lat,max_lon,max_lat (defaults to config).",
    ),
    skip_if_ready: bool = typer.Option(
        False,
        "--skip-if-ready",
        help="Skip fetching when the range already has enough cached images.",
    ),
    config_path: Path | None = _config_option(),
    cache_dir: Path | None = _cache_dir_option(),
) -> None:
    """Fetch missing dates from Sentinel Hub and merge them into the cache."""
    config = _load_app_config(config_path)
    start_date, end_date = _parse_range(start, end)
    bounding_box = _parse_bbox(bbox, default=config.bounding_box)
    repo = config.build_repository(cache_dir)

    try:
        client = SentinelHubClient.from_env(
            client_id_env=config.provider.client_id_env,
            client_secret_env=config.provider.client_secret_env,
            width=config.provider.width,
            height=config.provider.height,
            max_cloud_coverage=config.provider.max_cloud_coverage,
            timeout_seconds=config.provider.timeout_seconds,
        )
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    result = run_sync(
        repo=repo,
        fetcher=client,
        bounding_box=bounding_box,
        start=start_date,
        end=end_date,
        max_fetch_count=config.sync.max_fetch_count,
        sample_interval_days=config.sync.sample_interval_days,
        sleep_seconds=config.sync.sleep_seconds,
        skip_if_ready=skip_if_ready or config.sync.skip_if_ready,
        ready_threshold=config.sync.ready_threshold,
    )

    typer.echo(render_sync_table(result))
    typer.echo(
        "summary "
        f"source={result.source} "
        f"new={result.new_image_count} "
        f"total={result.total_image_count} "
        f"available={result.available_image_count} "
        f"remaining={result.remaining_to_fetch} "
        f"rejected={result.rejected} "
        f"errors={result.errors} "
        f"duration={result.duration_seconds:.3f}s"
    )


@app.command("status")
def cache_status(
    start: str | None = typer.Option(None, "--start", help="Range start date (YYYY-MM-DD)."),
    end: str | None = typer.Option(None, "--end", help="Range end date (YYYY-MM-DD)."),
    config_path: Path | None = _config_option(),
    cache_dir: Path | None = _cache_dir_option(),
) -> None:
    """Report how many valid cached images cover the range."""
    config = _load_app_config(config_path)
    end_default = date.today()
    start_date, end_date = _parse_range(
        start or (end_default - timedelta(days=STATUS_LOOKBACK_DAYS)).isoformat(),
        end or end_default.isoformat(),
    )
    repo = config.build_repository(cache_dir)
    status = repo.status(config.bounding_box, start_date, end_date)
    typer.echo(
        f"status={status.status} "
        f"cache_exists={str(status.cache_exists).lower()} "
        f"images={status.image_count} "
        f"start={status.start.isoformat()} "
        f"end={status.end.isoformat()} "
        f"load_ms={status.load_time_ms:.1f}"
    )


@app.command("clear")
def clear_cache(
    config_path: Path | None = _config_option(),
    cache_dir: Path | None = _cache_dir_option(),
) -> None:
    """Delete every cached image and the index."""
    repo = _load_app_config(config_path).build_repository(cache_dir)
    repo.clear_cache()
    typer.echo(f"cache cleared dir={repo.directory}")


@app.command("rebuild")
def rebuild_index(
    config_path: Path | None = _config_option(),
    cache_dir: Path | None = _cache_dir_option(),
) -> None:
    """Rebuild the index from the image files on disk."""
    repo = _load_app_config(config_path).build_repository(cache_dir)
    try:
        count = repo.rebuild_index()
    except OSError as exc:
        typer.echo(f"rebuild failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"rebuilt entries={count}")


@app.command("export-image")
def export_image(
    image_date: str = typer.Option(..., "--date", help="Image date (YYYY-MM-DD)."),
    out: Path = typer.Option(..., "--out", help="Output PNG path."),
    config_path: Path | None = _config_option(),
    cache_dir: Path | None = _cache_dir_option(),
) -> None:
    """Write one validated cached image to a file."""
    repo = _load_app_config(config_path).build_repository(cache_dir)
    parsed_date = _parse_date(image_date, option="--date")
    data = repo.read_image(parsed_date)
    if data is None:
        typer.echo(f"image not found date={parsed_date.isoformat()}", err=True)
        raise typer.Exit(code=1)

    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    typer.echo(f"exported date={parsed_date.isoformat()} bytes={len(data)} out={out}")


@debug_app.command("storage")
def debug_storage(
    cache_dir: Path = typer.Option(
        Path("data/cache/debug"),
        "--cache-dir",
        help="Scratch cache directory for the smoke test.",
    ),
) -> None:
    """Run storage smoke test."""
    repo = ImageRepository(cache_dir, default_bounding_box=BoundingBox.zero())
    sample_date = date(2000, 1, 1)
    payload = b"\x89PNG\r\n\x1a\n" + b"\x00" * repo.validator.min_bytes

    try:
        reference = repo.cache_image(sample_date, payload)
    except (ImageRejectedError, OSError) as exc:
        typer.echo(f"storage smoke test failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    repo.add_images([ImageEntry(date=sample_date, reference=reference, fetched_at=now_utc())])
    cached = repo.get_cached_images(BoundingBox.zero(), sample_date, sample_date)
    if not cached or repo.read_image(sample_date) != payload:
        typer.echo("storage smoke test failed", err=True)
        raise typer.Exit(code=1)

    typer.echo("storage ok")


def _load_app_config(config_path: Path | None) -> AppConfig:
    if config_path is None:
        return AppConfig()
    try:
        return load_config(config_path)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _parse_date(raw: str, *, option: str) -> date:
    try:
        return coerce_date(raw)
    except ValueError as exc:
        typer.echo(f"invalid {option} date: {raw}", err=True)
        raise typer.Exit(code=1) from exc


def _parse_range(start: str, end: str) -> tuple[date, date]:
    start_date = _parse_date(start, option="--start")
    end_date = _parse_date(end, option="--end")
    if end_date < start_date:
        typer.echo("--end must be on or after --start", err=True)
        raise typer.Exit(code=1)
    return start_date, end_date


def _parse_bbox(raw: str | None, *, default: BoundingBox) -> BoundingBox:
    if raw is None:
        return default
    try:
        return BoundingBox.parse(raw)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def main() -> None:
    """CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
