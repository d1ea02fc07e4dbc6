from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

CONFIG_FILENAME = "imgpipe.toml"
BUILTIN_SERVICES = ("pillow", "passthrough")


def _default_presets() -> dict[str, int]:
    return {"low": 25, "mid": 50, "high": 80, "max": 100}


class PillowServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    quality_presets: dict[str, int] = Field(default_factory=_default_presets)

    @field_validator("quality_presets")
    @classmethod
    def validate_presets(cls, v: dict[str, int]) -> dict[str, int]:
        for name, value in v.items():
            if not 0 <= value <= 100:
                raise ValueError(f"quality preset '{name}' must be within 0-100, got {value}")
        return v


class PassthroughServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ServicesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    pillow: Optional[PillowServiceConfig] = None
    passthrough: Optional[PassthroughServiceConfig] = None


class ImagesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_format: str = "webp"
    service: str = "pillow"
    out_dir: Path = Path("dist")
    base_path: str = "/_images"
    max_workers: int = Field(default=4, ge=1, le=64)
    optimize_remote: bool = False
    services: ServicesConfig = ServicesConfig()

    @field_validator("default_format")
    @classmethod
    def validate_default_format(cls, v: str) -> str:
        if not v:
            raise ValueError("default_format cannot be empty")
        return v.lower()

    @field_validator("base_path")
    @classmethod
    def validate_base_path(cls, v: str) -> str:
        return "/" + v.strip("/") if v.strip("/") else ""

    @model_validator(mode="after")
    def check_service_exists(self) -> "ImagesConfig":
        if self.service not in BUILTIN_SERVICES:
            raise ValueError(
                f"service '{self.service}' is not available. "
                f"Available services: {sorted(BUILTIN_SERVICES)}"
            )
        return self


class ConfigError(Exception):
    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


def load_config(config_path: Path) -> ImagesConfig:
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigError(
            f"Config file not found. Create {CONFIG_FILENAME} or pass --config", path=config_path
        ) from e

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse TOML: {e}", path=config_path) from e

    try:
        return ImagesConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", path=config_path) from e


def find_config(start_dir: Optional[Path] = None) -> Optional[Path]:
    """Nearest `imgpipe.toml` in `start_dir` or any of its parents."""
    start = (start_dir or Path.cwd()).resolve()
    for directory in [start, *start.parents]:
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config_or_default(config_path: Optional[Path] = None) -> ImagesConfig:
    """Load an explicit or discovered config file; fall back to defaults when none exists."""
    path = config_path or find_config()
    return load_config(path) if path is not None else ImagesConfig()
