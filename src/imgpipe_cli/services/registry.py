from __future__ import annotations

from typing import Callable

from ..config import BUILTIN_SERVICES, ConfigError, ImagesConfig
from .base import ImageService
from .passthrough import PassthroughService
from .pillow import PillowService


class ServiceRegistry:
    """Builds the image services named in config, one instance per name."""

    def __init__(self, config: ImagesConfig):
        self._config = config
        self._services: dict[str, ImageService] = {}
        self._factories: dict[str, Callable[[], ImageService]] = {
            "pillow": lambda: PillowService(config.services.pillow),
            "passthrough": PassthroughService,
        }

    def get_service(self, name: str) -> ImageService:
        service = self._services.get(name)
        if service is None:
            factory = self._factories.get(name)
            if factory is None:
                raise ConfigError(
                    f"Unknown image service: '{name}'. Available services: {sorted(BUILTIN_SERVICES)}"
                )
            service = self._services[name] = factory()
        return service

    def get_default_service(self) -> ImageService:
        return self.get_service(self._config.service)
