"""
Asset classification for the shared texture source tree.
Maps a relative path onto a semantic asset kind without touching the filesystem.
"""

import re
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict


class AssetKind(str, Enum):
    """Semantic categories a source file can belong to."""
    BLOCK_TEXTURE = "block_texture"
    ITEM_TEXTURE = "item_texture"
    INTERFACE_TEXTURE = "interface_texture"
    ENVIRONMENT_TEXTURE = "environment_texture"
    PARTICLE_TEXTURE = "particle_texture"
    MISC_TEXTURE = "misc_texture"
    PACK_METADATA = "pack_metadata"
    PACK_CONFIG = "pack_config"
    UNKNOWN = "unknown"

    @property
    def is_texture(self) -> bool:
        return self.value.endswith("_texture")

    @property
    def is_metadata(self) -> bool:
        return self in (AssetKind.PACK_METADATA, AssetKind.PACK_CONFIG)


IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.bmp', '.tiff'}
METADATA_EXTENSIONS = {'.txt', '.json', '.mcmeta'}
SUPPORTED_EXTENSIONS = IMAGE_EXTENSIONS | METADATA_EXTENSIONS

PACK_DESCRIPTOR_NAMES = {'pack.txt', 'pack.mcmeta'}
PACK_ICON_NAME = 'pack.png'
CONFIG_FRAGMENTS = ('config', 'settings')

# Checked in order; the first directory rule that matches wins.
DIRECTORY_RULES = (
    (('blocks', 'terrain'), AssetKind.BLOCK_TEXTURE),
    (('items',), AssetKind.ITEM_TEXTURE),
    (('gui',), AssetKind.INTERFACE_TEXTURE),
    (('environment',), AssetKind.ENVIRONMENT_TEXTURE),
    (('particles', 'particle'), AssetKind.PARTICLE_TEXTURE),
    (('misc',), AssetKind.MISC_TEXTURE),
)

# Where each texture kind lives inside the shared assets directory.
KIND_DIRECTORIES: Dict[AssetKind, str] = {
    AssetKind.BLOCK_TEXTURE: 'blocks',
    AssetKind.ITEM_TEXTURE: 'items',
    AssetKind.INTERFACE_TEXTURE: 'gui',
    AssetKind.ENVIRONMENT_TEXTURE: 'environment',
    AssetKind.PARTICLE_TEXTURE: 'particles',
    AssetKind.MISC_TEXTURE: 'misc',
}

LEGACY_CATEGORY_RULES = (
    (('door', 'sign'), AssetKind.ITEM_TEXTURE),
    (('furnace', 'chest', 'crafting_table', 'jukebox', 'cake', 'bookshelf'), AssetKind.INTERFACE_TEXTURE),
    (('water', 'lava', 'fire', 'portal'), AssetKind.ENVIRONMENT_TEXTURE),
    (('torch', 'wire', 'rails', 'ladder'), AssetKind.MISC_TEXTURE),
)


def _normalize(relative_path: str) -> PurePosixPath:
    return PurePosixPath(relative_path.replace('\\', '/').lower())


def classify(relative_path: str) -> AssetKind:
    """
    Assign an asset kind to a path relative to the source root.

    Filename rules are checked before directory rules, which are checked
    before the extension default. Unsupported extensions are always UNKNOWN.

    Args:
        relative_path: Path relative to the scanned root, either separator

    Returns:
        The asset kind for the path
    """
    path = _normalize(relative_path)
    ext = path.suffix
    filename = path.name

    if ext not in SUPPORTED_EXTENSIONS:
        return AssetKind.UNKNOWN

    if filename in PACK_DESCRIPTOR_NAMES:
        return AssetKind.PACK_METADATA
    if filename == PACK_ICON_NAME:
        return AssetKind.INTERFACE_TEXTURE
    if any(fragment in filename for fragment in CONFIG_FRAGMENTS):
        return AssetKind.PACK_CONFIG

    directories = path.parent.parts
    for names, kind in DIRECTORY_RULES:
        if any(name in part for part in directories for name in names):
            return kind

    # Flat source trees still produce usable output
    if ext in IMAGE_EXTENSIONS:
        return AssetKind.BLOCK_TEXTURE

    return AssetKind.UNKNOWN


def texture_name(relative_path: str) -> str:
    """Logical asset name used by coordinate maps, e.g. 'blocks/Oak Log.png' -> 'oak_log'."""
    stem = PurePosixPath(relative_path.replace('\\', '/')).stem
    return re.sub(r'\s+', '_', stem.lower())


def legacy_category(name: str) -> AssetKind:
    """Route a default-table texture name to the kind its output directory belongs to."""
    for fragments, kind in LEGACY_CATEGORY_RULES:
        if any(fragment in name for fragment in fragments):
            return kind
    return AssetKind.BLOCK_TEXTURE
