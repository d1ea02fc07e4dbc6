from __future__ import annotations

from typing import Optional


class ImageError(Exception):
    """Base class for every image resolution failure."""


class MissingDimensionError(ImageError):
    def __init__(self, dimension: str, src: str):
        self.dimension = dimension
        self.src = src
        super().__init__(
            f"Missing {dimension} for remote image '{src}'. "
            "Remote images require both width and height to be set."
        )


class InvalidDimensionError(ImageError):
    def __init__(self, dimension: str, value: object):
        self.dimension = dimension
        self.value = value
        super().__init__(f"Invalid {dimension}: {value!r}. Expected a positive, finite number.")


class UnsupportedInputFormatError(ImageError):
    def __init__(self, fmt: str, src: Optional[str] = None):
        self.format = fmt
        self.src = src
        where = f" ({src})" if src else ""
        super().__init__(f"Unsupported input format '{fmt}'{where}")


class UnsupportedOutputFormatError(ImageError):
    def __init__(self, fmt: str, service_id: str, supported: tuple[str, ...]):
        self.format = fmt
        self.service_id = service_id
        self.supported = supported
        super().__init__(
            f"Image service '{service_id}' cannot produce '{fmt}'. "
            f"Supported output formats: {sorted(supported)}"
        )


class InvalidQualityError(ImageError):
    def __init__(self, quality: object, fmt: str, service_id: str):
        self.quality = quality
        self.format = fmt
        super().__init__(f"Image service '{service_id}' rejects quality {quality!r} for '{fmt}'")


class UnreadableSourceError(ImageError):
    def __init__(self, src: str, reason: str = ""):
        self.src = src
        message = f"Cannot read image source: {src}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class BackendFailure(ImageError):
    """Raised when the image service fails to transform a single asset."""

    def __init__(self, fingerprint: str, reason: str):
        self.fingerprint = fingerprint
        super().__init__(f"Transform {fingerprint[:12]} failed: {reason}")


class RegistryError(ImageError):
    pass
