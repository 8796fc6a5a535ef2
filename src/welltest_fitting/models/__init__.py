"""Reference forward models (registered on import)."""

from .homogeneous import HOMOGENEOUS, homogeneous_curves
from .fractured import FRACTURED_HORIZONTAL, fractured_horizontal_curves

__all__ = [
    "HOMOGENEOUS",
    "FRACTURED_HORIZONTAL",
    "homogeneous_curves",
    "fractured_horizontal_curves",
]
