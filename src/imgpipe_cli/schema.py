from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .types import RESERVED_KEYS

REMOTE_PREFIXES = ("http://", "https://", "//")


class ImageSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")
    src: str = Field(min_length=1)
    width: Optional[Union[int, float, str]] = None
    height: Optional[Union[int, float, str]] = None
    quality: Optional[Union[int, str]] = None
    format: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @field_validator("format")
    @classmethod
    def _lower_format(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v

    @field_validator("extra")
    @classmethod
    def _no_reserved_extra(cls, v: dict[str, Any]) -> dict[str, Any]:
        clash = sorted(RESERVED_KEYS & set(v))
        if clash:
            raise ValueError(f"extra must not repeat top-level keys: {clash}")
        return v

    @property
    def is_remote(self) -> bool:
        return self.src.startswith(REMOTE_PREFIXES)


class ImageManifest(BaseModel):
    version: int = 1
    images: list[ImageSpec] = Field(default_factory=list)
