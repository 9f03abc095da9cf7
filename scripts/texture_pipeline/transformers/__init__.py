"""
Per-profile transformers.
"""

from .base import BuildContext, Transformer, TransformerRegistry, TransformResult
from .beta173 import Beta173Transformer

__all__ = [
    "BuildContext",
    "Transformer",
    "TransformerRegistry",
    "TransformResult",
    "Beta173Transformer",
]
