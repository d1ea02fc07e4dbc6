from __future__ import annotations

from abc import ABC, abstractmethod

from ..types import Quality, ResolvedTransform


class ImageService(ABC):
    """Pluggable backend that performs pixel transforms.

    The core only ever queries the capability surface; concrete services are
    picked from configuration by :class:`~imgpipe_cli.services.registry.ServiceRegistry`.
    """

    @property
    @abstractmethod
    def service_id(self) -> str: ...

    @property
    @abstractmethod
    def supported_input_formats(self) -> tuple[str, ...]: ...

    @property
    @abstractmethod
    def supported_output_formats(self) -> tuple[str, ...]: ...

    @abstractmethod
    def supports_quality(self, fmt: str) -> bool: ...

    @abstractmethod
    def is_valid_quality(self, quality: Quality, fmt: str) -> bool: ...

    @abstractmethod
    def transform(self, source: bytes, resolved: ResolvedTransform) -> bytes:
        """Return the encoded bytes for `resolved`."""
        raise NotImplementedError
