from .base import ImageService
from .passthrough import PassthroughService
from .pillow import PillowService
from .registry import ServiceRegistry

__all__ = [
    "ImageService",
    "PassthroughService",
    "PillowService",
    "ServiceRegistry",
]
