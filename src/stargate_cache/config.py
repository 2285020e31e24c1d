from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from stargate_cache.schemas import BoundingBox, ReferenceStrategy
from stargate_cache.storage import ImageRepository

DEFAULT_BOUNDING_BOX = (
    -99.8065975964918,
    32.492551389316205,
    -99.7717279119445,
    32.51217098523884,
)


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    directory: str = ".cache/satellite-images"
    min_image_bytes: int = Field(default=10_000, ge=0)
    rebuild_slack: int = Field(default=10, ge=0)
    reference_strategy: ReferenceStrategy = ReferenceStrategy.DATA_URL
    static_prefix: str = "/cache"
    enforce_bbox_match: bool = False
    max_age_seconds: int | None = Field(default=None, ge=0)

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("cache.directory must not be empty")
        return normalized

    @field_validator("static_prefix")
    @classmethod
    def validate_static_prefix(cls, value: str) -> str:
        return value.strip().rstrip("/")


class ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    client_id_env: str = "SENTINEL_CLIENT_ID"
    client_secret_env: str = "SENTINEL_CLIENT_SECRET"
    width: int = Field(default=512, ge=1, le=2500)
    height: int = Field(default=512, ge=1, le=2500)
    max_cloud_coverage: int = Field(default=40, ge=0, le=100)
    timeout_seconds: float = Field(default=30.0, gt=0.0)

    @field_validator("client_id_env", "client_secret_env")
    @classmethod
    def validate_env_names(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("provider credential env names must not be empty")
        return normalized


class SyncConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_fetch_count: int = Field(default=20, ge=1)
    sample_interval_days: int = Field(default=3, ge=1)
    sleep_seconds: float = Field(default=0.5, ge=0.0)
    skip_if_ready: bool = False
    ready_threshold: int = Field(default=5, ge=1)


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bounding_box: BoundingBox = Field(
        default_factory=lambda: BoundingBox.model_validate(list(DEFAULT_BOUNDING_BOX))
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)

    def build_repository(self, cache_dir: str | Path | None = None) -> ImageRepository:
        return ImageRepository(
            cache_dir if cache_dir is not None else self.cache.directory,
            default_bounding_box=self.bounding_box,
            min_image_bytes=self.cache.min_image_bytes,
            rebuild_slack=self.cache.rebuild_slack,
            reference_strategy=self.cache.reference_strategy,
            static_prefix=self.cache.static_prefix,
            enforce_bbox_match=self.cache.enforce_bbox_match,
            max_age_seconds=self.cache.max_age_seconds,
        )


def load_config(path: str | Path) -> AppConfig:
    raw = Path(path).read_text(encoding="utf-8")
    payload = _parse_yaml_or_json(raw)
    try:
        return AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration: {exc}") from exc


def _parse_yaml_or_json(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        parsed = _parse_yaml(raw)
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed


def _parse_yaml(raw: str) -> dict[str, Any]:
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ValueError(f"Configuration is neither valid JSON nor YAML: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Configuration root must be an object.")
    return parsed
