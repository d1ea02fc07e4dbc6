from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

VALID_INPUT_FORMATS = ("heic", "heif", "avif", "jpeg", "jpg", "png", "tiff", "webp", "gif")
VALID_OUTPUT_FORMATS = ("avif", "png", "webp", "jpeg", "jpg")
VECTOR_FORMAT = "svg"

QUALITY_PRESETS = ("low", "mid", "high", "max")

# Keys that live on the request itself and must not leak into `extra`.
RESERVED_KEYS = frozenset({"src", "width", "height", "quality", "format"})

Quality = Union[str, int]


@dataclass(frozen=True)
class IntrinsicMetadata:
    src: str
    width: int
    height: int
    format: str

    @property
    def is_vector(self) -> bool:
        return self.format == VECTOR_FORMAT


@dataclass(frozen=True)
class LocalSource:
    metadata: IntrinsicMetadata
    kind: Literal["local"] = "local"

    @property
    def identity(self) -> str:
        return self.metadata.src


@dataclass(frozen=True)
class RemoteSource:
    url: str
    kind: Literal["remote"] = "remote"

    @property
    def identity(self) -> str:
        return self.url


ImageSource = Union[LocalSource, RemoteSource]


@dataclass(frozen=True)
class TransformRequest:
    source: ImageSource
    width: Optional[Union[int, float, str]] = None
    height: Optional[Union[int, float, str]] = None
    quality: Optional[Quality] = None
    format: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedTransform:
    source: ImageSource
    width: int
    height: int
    format: str
    quality: Optional[Quality] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def options(self) -> dict[str, Any]:
        """Flattened transform options, the shape handed to markup emission."""
        opts: dict[str, Any] = dict(self.extra)
        opts["src"] = self.source.identity
        opts["width"] = self.width
        opts["height"] = self.height
        opts["format"] = self.format
        if self.quality is not None:
            opts["quality"] = self.quality
        return opts


@dataclass(frozen=True)
class RegistryEntry:
    fingerprint: str
    output_path: str
    resolved: ResolvedTransform


@dataclass(frozen=True)
class StaticImage:
    path: str
    options: dict[str, Any]
