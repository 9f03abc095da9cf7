"""
Texture pipeline for the Pluie texture pack.

Discovers shared texture sources, transforms them per target profile (grid
atlases for legacy versions), packages archives and keeps them deployed while
sources change.
"""

__version__ = "1.0.0"

from .config import PipelineConfig
from .errors import PipelineError, ConfigurationError
from .pipeline import AssetPipeline
from .builder import PackBuilder
from .transformers.base import Transformer, TransformerRegistry, TransformResult

__all__ = [
    "PipelineConfig",
    "PipelineError",
    "ConfigurationError",
    "AssetPipeline",
    "PackBuilder",
    "Transformer",
    "TransformerRegistry",
    "TransformResult",
]
