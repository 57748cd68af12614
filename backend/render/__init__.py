from .surface import MarkerHandle, MarkerSurface, RecordingSurface
from .types import FlyTo, MarkerKey, MarkerNotFoundError, MarkerSpec, RenderDiff, Viewport
from .viewport import ViewportRenderer

__all__ = [
    "FlyTo",
    "MarkerHandle",
    "MarkerKey",
    "MarkerNotFoundError",
    "MarkerSpec",
    "MarkerSurface",
    "RecordingSurface",
    "RenderDiff",
    "Viewport",
    "ViewportRenderer",
]
