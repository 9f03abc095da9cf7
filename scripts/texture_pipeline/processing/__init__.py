"""
Asset processing modules for classification, discovery, atlas composition and packaging.
"""

from .classifier import AssetKind, classify, texture_name
from .discovery import AssetDiscovery, AssetRecord, AssetMetadata, DiscoveryResult
from .atlas import (
    AtlasComposer,
    AtlasDecomposer,
    AtlasResult,
    CoordinateMap,
    DecompositionReport,
    default_terrain_map,
)
from .package import PackPackager, PackageManifest

__all__ = [
    "AssetKind",
    "classify",
    "texture_name",
    "AssetDiscovery",
    "AssetRecord",
    "AssetMetadata",
    "DiscoveryResult",
    "AtlasComposer",
    "AtlasDecomposer",
    "AtlasResult",
    "CoordinateMap",
    "DecompositionReport",
    "default_terrain_map",
    "PackPackager",
    "PackageManifest",
]
