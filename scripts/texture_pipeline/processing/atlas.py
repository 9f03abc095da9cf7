"""
Coordinate-driven texture atlas composition and decomposition.

A coordinate map places named unit textures on a fixed grid. Composition pastes
every resolved texture into its cell, decomposition slices an atlas back into
per-name files using the same map.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

import numpy as np
from PIL import Image

from ..errors import CoordinateMapError, DecompositionError
from ..utils.image import ImageUtils
from .classifier import KIND_DIRECTORIES, AssetKind, legacy_category, texture_name
from .discovery import AssetRecord

logger = logging.getLogger(__name__)

UNUSED = "unused"
REMAINING_TILES_KEY = "remaining_tiles"
PLACEHOLDER_COLOR = (255, 0, 255, 255)

# Hand-authored terrain layout used until a profile ships its own coordinate map.
DEFAULT_TERRAIN_POSITIONS: Tuple[Tuple[str, int, int], ...] = (
    # Row 0
    ('grass', 0, 0), ('stone', 1, 0), ('dirt', 2, 0), ('cobblestone', 3, 0),
    ('planks', 4, 0), ('sapling', 5, 0), ('bedrock', 6, 0), ('water', 7, 0),
    ('waterflowing', 8, 0), ('lava', 9, 0), ('lavaflowing', 10, 0), ('sand', 11, 0),
    ('gravel', 12, 0), ('goldore', 13, 0), ('ironore', 14, 0), ('coalore', 15, 0),
    # Row 1
    ('log', 0, 1), ('leaves', 1, 1), ('grass_carried', 2, 1), ('grass_top', 3, 1),
    ('flowers', 4, 1), ('roses', 5, 1), ('mushroom_red', 6, 1), ('mushroom_brown', 7, 1),
    ('goldblock', 8, 1), ('ironblock', 9, 1), ('double_slab', 10, 1), ('slab', 11, 1),
    ('brick', 12, 1), ('tnt', 13, 1), ('bookshelf', 14, 1), ('mossy_cobblestone', 15, 1),
    # Row 2
    ('obsidian', 0, 2), ('torch', 1, 2), ('fire', 2, 2), ('mob_spawner', 3, 2),
    ('oak_stairs', 4, 2), ('chest', 5, 2), ('redstone_wire', 6, 2), ('diamondore', 7, 2),
    ('diamondblock', 8, 2), ('crafting_table', 9, 2), ('crops', 10, 2), ('soil', 11, 2),
    ('furnace', 12, 2), ('furnace_lit', 13, 2), ('sign_post', 14, 2), ('door_wood_upper', 15, 2),
    # Row 3
    ('ladder', 0, 3), ('rails', 1, 3), ('cobblestone_stairs', 2, 3), ('door_wood_lower', 3, 3),
    ('iron_door_upper', 4, 3), ('iron_door_lower', 5, 3), ('redstone_ore', 6, 3),
    ('redstone_ore_lit', 7, 3), ('stone_stairs', 8, 3), ('button_stone', 9, 3), ('snow', 10, 3),
    ('ice', 11, 3), ('snow_block', 12, 3), ('cactus', 13, 3), ('clay', 14, 3), ('reeds', 15, 3),
    # Row 4
    ('jukebox', 0, 4), ('fence', 1, 4), ('pumpkin', 2, 4), ('bloodstone', 3, 4),
    ('slow_sand', 4, 4), ('lightstone', 5, 4), ('portal', 6, 4), ('jack_o_lantern', 7, 4),
    ('cake', 8, 4),
)

TERRAIN_GRID = 16
TERRAIN_CELL_SIZE = 16


def _cell_key(grid_x: int, grid_y: int) -> str:
    return f"{grid_x},{grid_y}"


def _decode_cell_key(key: str, source: Optional[str] = None) -> Tuple[int, int]:
    parts = key.split(',')
    if len(parts) != 2:
        raise CoordinateMapError(f"cell key '{key}' is not of the form 'x,y'", source)
    try:
        return int(parts[0].strip()), int(parts[1].strip())
    except ValueError:
        raise CoordinateMapError(f"cell key '{key}' does not decode to integers", source)


def _positive_int(data: Dict[str, Any], name: str, source: Optional[str]) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise CoordinateMapError(f"'{name}' must be a positive integer, got {value!r}", source)
    return value


@dataclass(frozen=True)
class GridEntry:
    """One decoded coordinate-map entry."""
    key: str
    name: str
    grid_x: int
    grid_y: int

    @property
    def is_unused(self) -> bool:
        return self.name == UNUSED


@dataclass
class CoordinateMap:
    """Grid layout mapping 'x,y' cell keys to logical texture names."""
    rows: int
    cols: int
    cell_size: int
    positions: Dict[str, str] = field(default_factory=dict)
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "CoordinateMap":
        """
        Build a coordinate map from its JSON representation.

        Two coordinate layouts are accepted: terrain maps use '"x,y": name' and
        item maps use 'name: [x, y]'. The 'remaining_tiles' entry is ignored.

        Raises:
            CoordinateMapError: If dimensions or coordinates are malformed
        """
        if not isinstance(data, dict):
            raise CoordinateMapError("top level must be an object", source)

        rows = _positive_int(data, 'rows', source)
        cols = _positive_int(data, 'cols', source)
        cell_size = _positive_int(data, 'tile_size', source)

        coordinates = data.get('coordinates')
        if not isinstance(coordinates, dict):
            raise CoordinateMapError("'coordinates' must be an object", source)

        positions: Dict[str, str] = {}
        inverted: List[Tuple[str, int, int]] = []
        for key, value in coordinates.items():
            if key == REMAINING_TILES_KEY:
                continue
            if isinstance(value, str):
                _decode_cell_key(key, source)
                positions[key] = value
            elif isinstance(value, (list, tuple)) and len(value) == 2 and all(
                    isinstance(v, int) and not isinstance(v, bool) for v in value):
                inverted.append((key, value[0], value[1]))
            else:
                raise CoordinateMapError(f"unsupported value for '{key}': {value!r}", source)

        # Item maps can name two textures for one cell; keep the result independent of key order
        for name, grid_x, grid_y in sorted(inverted):
            positions[_cell_key(grid_x, grid_y)] = name

        return cls(rows=rows, cols=cols, cell_size=cell_size, positions=positions, source=source)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CoordinateMap":
        """Load a coordinate map JSON file."""
        path = Path(path)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise CoordinateMapError(f"invalid JSON: {e}", str(path))
        except OSError as e:
            raise CoordinateMapError(f"cannot read file: {e}", str(path))
        return cls.from_dict(data, source=str(path))

    @classmethod
    def from_positions(cls, positions: Iterable[Tuple[str, int, int]], rows: int = TERRAIN_GRID,
                       cols: int = TERRAIN_GRID, cell_size: int = TERRAIN_CELL_SIZE) -> "CoordinateMap":
        """Build a map from (name, grid_x, grid_y) tuples."""
        cells = {_cell_key(x, y): name for name, x, y in positions}
        return cls(rows=rows, cols=cols, cell_size=cell_size, positions=cells)

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return self.cols * self.cell_size, self.rows * self.cell_size

    def entries(self) -> List[GridEntry]:
        """
        Decoded entries ordered by (grid_y, grid_x, key).

        When two keys decode to the same cell the later one in this order is the
        one that ends up in the composite.
        """
        decoded = []
        for key, name in self.positions.items():
            grid_x, grid_y = _decode_cell_key(key, self.source)
            decoded.append(GridEntry(key=key, name=name, grid_x=grid_x, grid_y=grid_y))
        decoded.sort(key=lambda e: (e.grid_y, e.grid_x, e.key))
        return decoded

    def in_bounds(self, entry: GridEntry) -> bool:
        return 0 <= entry.grid_x < self.cols and 0 <= entry.grid_y < self.rows

    def names(self) -> List[str]:
        """Texture names referenced by the map, excluding the unused sentinel."""
        return sorted({name for name in self.positions.values() if name != UNUSED})


def default_terrain_map() -> CoordinateMap:
    """The built-in 16x16 terrain layout with 16 px cells."""
    return CoordinateMap.from_positions(DEFAULT_TERRAIN_POSITIONS)


def index_records_by_name(records: Sequence[AssetRecord]) -> Tuple[Dict[str, Path], List[str]]:
    """
    Map logical texture names to source files.

    Records are taken in relative-path order; when two records share a name the
    first one wins and the others are returned as duplicates.

    Returns:
        (name -> source path, relative paths of duplicate records)
    """
    sources: Dict[str, Path] = {}
    duplicates: List[str] = []
    for record in sorted(records, key=lambda r: r.relative_path):
        name = texture_name(record.relative_path)
        if name in sources:
            logger.info(f"Duplicate texture name '{name}' from {record.relative_path}, keeping first")
            duplicates.append(record.relative_path)
            continue
        sources[name] = record.source_path
    return sources, duplicates


def match_default_positions(
    records: Sequence[AssetRecord],
    positions: Sequence[Tuple[str, int, int]] = DEFAULT_TERRAIN_POSITIONS,
) -> Tuple[List[Tuple[str, int, int]], Dict[str, Path], List[str]]:
    """
    Match block records against the built-in position table.

    Exact logical names claim their slots first. Remaining records then match
    the first entry (in table order) whose name appears in their relative path.
    Each table slot takes at most one record.

    Returns:
        (matched positions, table name -> source path, unmatched relative paths)
    """
    by_name = {name: (name, x, y) for name, x, y in positions}
    ordered = sorted(records, key=lambda r: r.relative_path)
    matched: Dict[str, Path] = {}
    rejected: Set[str] = set()
    partial: List[AssetRecord] = []

    for record in ordered:
        name = texture_name(record.relative_path)
        if name not in by_name:
            partial.append(record)
        elif name in matched:
            logger.info(f"Grid slot '{name}' already taken, skipping {record.relative_path}")
            rejected.add(record.relative_path)
        else:
            matched[name] = record.source_path

    for record in partial:
        lowered = record.relative_path.lower()
        position = next((p for p in positions if p[0] in lowered), None)
        if position is None:
            logger.debug(f"No grid position found for texture: {texture_name(record.relative_path)}")
            rejected.add(record.relative_path)
        elif position[0] in matched:
            logger.info(f"Grid slot '{position[0]}' already taken, skipping {record.relative_path}")
            rejected.add(record.relative_path)
        else:
            matched[position[0]] = record.source_path

    placed = [p for p in positions if p[0] in matched]
    unmatched = [r.relative_path for r in ordered if r.relative_path in rejected]
    return placed, matched, unmatched


@dataclass
class AtlasResult:
    """Result of atlas composition."""
    atlas: Image.Image
    frame_map: Dict[str, Dict[str, int]]
    placed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    placeholders: List[str] = field(default_factory=list)
    out_of_bounds: List[str] = field(default_factory=list)
    output_path: Optional[Path] = None

    @property
    def is_empty(self) -> bool:
        """True when no texture was staged; placeholders alone do not count."""
        return not self.placed

    def save_atlas(self, path: Union[str, Path], format: str = 'PNG', compression_level: int = 6) -> None:
        """Save atlas image to file."""
        ImageUtils.save_image(self.atlas, path, format=format, compress_level=compression_level)


class AtlasComposer:
    """Lays named textures out on a fixed grid according to a coordinate map."""

    def __init__(self, placeholder_path: Optional[Union[str, Path]] = None,
                 placeholder_color: Tuple[int, int, int, int] = PLACEHOLDER_COLOR):
        self.placeholder_path = Path(placeholder_path) if placeholder_path else None
        self.placeholder_color = placeholder_color
        self._placeholders: Dict[int, Image.Image] = {}

    def placeholder(self, cell_size: int) -> Image.Image:
        """Tile drawn into unused cells, loaded from disk when available."""
        if cell_size not in self._placeholders:
            tile = None
            if self.placeholder_path is not None and self.placeholder_path.is_file():
                try:
                    tile = ImageUtils.resize_to_cell(ImageUtils.load_image(self.placeholder_path), cell_size)
                except ValueError as e:
                    logger.warning(f"Could not load placeholder {self.placeholder_path}: {e}")
            if tile is None:
                tile = ImageUtils.placeholder_tile(cell_size, self.placeholder_color)
            self._placeholders[cell_size] = tile
        return self._placeholders[cell_size]

    @staticmethod
    def _evict(result: AtlasResult, previous: Optional[GridEntry]) -> None:
        """Forget the entry whose cell is about to be painted over."""
        if previous is None:
            return
        if previous.is_unused:
            result.placeholders.remove(previous.key)
            return
        logger.info(f"Cell {previous.key} reassigned, dropping '{previous.name}'")
        result.placed.remove(previous.name)
        if previous.name not in result.placed:
            result.frame_map.pop(previous.name, None)

    def compose(self, coordinate_map: CoordinateMap, sources: Dict[str, Union[str, Path]]) -> AtlasResult:
        """
        Compose an atlas from named source images.

        Missing names and unreadable images are recorded as skipped; cells outside
        the grid are logged and ignored. Layers are applied in entry order, so a
        later entry for the same cell replaces an earlier one.

        Args:
            coordinate_map: Grid layout to fill
            sources: Logical texture name -> image path

        Returns:
            AtlasResult with the composed canvas and placement bookkeeping
        """
        cell = coordinate_map.cell_size
        canvas = ImageUtils.new_canvas(*coordinate_map.canvas_size)
        layers = []
        occupants: Dict[Tuple[int, int], GridEntry] = {}
        result = AtlasResult(atlas=canvas, frame_map={})

        for entry in coordinate_map.entries():
            if not coordinate_map.in_bounds(entry):
                logger.warning(
                    f"Coordinate {entry.key} for '{entry.name}' is outside the "
                    f"{coordinate_map.cols}x{coordinate_map.rows} grid, skipping"
                )
                result.out_of_bounds.append(entry.key)
                continue

            x, y = entry.grid_x * cell, entry.grid_y * cell
            if entry.is_unused:
                layers.append((self.placeholder(cell), x, y))
                self._evict(result, occupants.get((entry.grid_x, entry.grid_y)))
                result.placeholders.append(entry.key)
                occupants[(entry.grid_x, entry.grid_y)] = entry
                continue

            source = sources.get(entry.name)
            if source is None:
                logger.debug(f"No source texture for '{entry.name}'")
                result.skipped.append(entry.name)
                continue

            try:
                image = ImageUtils.resize_to_cell(ImageUtils.load_image(Path(source)), cell)
            except ValueError as e:
                logger.warning(f"Could not process texture {source}: {e}")
                result.skipped.append(entry.name)
                continue

            layers.append((image, x, y))
            self._evict(result, occupants.get((entry.grid_x, entry.grid_y)))
            result.placed.append(entry.name)
            occupants[(entry.grid_x, entry.grid_y)] = entry
            result.frame_map[entry.name] = {"x": x, "y": y, "w": cell, "h": cell}

        ImageUtils.composite(canvas, layers)
        logger.info(
            f"Composed atlas with {len(result.placed)} textures, "
            f"{len(result.placeholders)} placeholders, {len(result.skipped)} missing"
        )
        return result

    def compose_to_file(self, coordinate_map: CoordinateMap, sources: Dict[str, Union[str, Path]],
                        output_path: Union[str, Path], format: str = 'PNG',
                        compression_level: int = 6) -> AtlasResult:
        """
        Compose an atlas and write it, unless no texture was placed.

        Callers detect the empty case through result.is_empty / result.output_path.
        """
        result = self.compose(coordinate_map, sources)
        if result.is_empty:
            logger.info(f"No textures placed, not writing {output_path}")
            return result

        result.save_atlas(output_path, format=format, compression_level=compression_level)
        result.output_path = Path(output_path)
        return result


@dataclass
class DecompositionReport:
    """Outcome of slicing an atlas back into unit textures."""
    extracted: List[Path] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    non_empty: List[Tuple[int, int]] = field(default_factory=list)


class AtlasDecomposer:
    """Inverse of AtlasComposer: extracts named cells into individual PNG files."""

    def _load_atlas(self, atlas_path: Union[str, Path]) -> Image.Image:
        path = Path(atlas_path)
        if not path.is_file():
            raise DecompositionError(f"Atlas file not found: {path}")
        try:
            return ImageUtils.load_image(path)
        except ValueError as e:
            raise DecompositionError(str(e))

    def _extract(self, atlas: Image.Image, entries: Iterable[Tuple[str, int, int, Path]], cell_size: int,
                 force: bool, report: DecompositionReport) -> None:
        width, height = atlas.size
        for name, grid_x, grid_y, target in entries:
            if (grid_x + 1) * cell_size > width or (grid_y + 1) * cell_size > height or grid_x < 0 or grid_y < 0:
                logger.warning(f"Cell ({grid_x}, {grid_y}) for '{name}' lies outside the atlas")
                report.failed.append(name)
                continue
            if target.exists() and not force:
                logger.debug(f"Skipping existing {target}")
                report.skipped.append(target)
                continue
            try:
                ImageUtils.save_image(ImageUtils.crop_cell(atlas, grid_x, grid_y, cell_size), target)
            except OSError as e:
                logger.warning(f"Failed to extract {name}: {e}")
                report.failed.append(name)
                continue
            report.extracted.append(target)

    def decompose(self, atlas_path: Union[str, Path], coordinate_map: CoordinateMap,
                  output_dir: Union[str, Path], force: bool = False) -> DecompositionReport:
        """
        Slice an atlas into '<name>.png' files using a coordinate map.

        Unused cells are never extracted. Existing files are left alone unless
        force is set.

        Raises:
            DecompositionError: If the atlas is missing or cannot be decoded
        """
        atlas = self._load_atlas(atlas_path)
        output_dir = Path(output_dir)
        report = DecompositionReport()
        entries = [
            (e.name, e.grid_x, e.grid_y, output_dir / f"{e.name}.png")
            for e in coordinate_map.entries() if not e.is_unused
        ]
        self._extract(atlas, entries, coordinate_map.cell_size, force, report)
        logger.info(
            f"Extracted {len(report.extracted)} textures from {atlas_path} "
            f"({len(report.skipped)} existing, {len(report.failed)} failed)"
        )
        return report

    def decompose_by_category(self, atlas_path: Union[str, Path], assets_dir: Union[str, Path],
                              force: bool = False,
                              positions: Sequence[Tuple[str, int, int]] = DEFAULT_TERRAIN_POSITIONS,
                              cell_size: int = TERRAIN_CELL_SIZE) -> DecompositionReport:
        """
        Slice an atlas using the built-in table, routing each texture into the
        directory of its legacy category (blocks, items, gui, environment, misc).
        """
        atlas = self._load_atlas(atlas_path)
        assets_dir = Path(assets_dir)
        report = DecompositionReport()
        entries = []
        for name, grid_x, grid_y in positions:
            kind = legacy_category(name)
            directory = KIND_DIRECTORIES.get(kind, KIND_DIRECTORIES[AssetKind.BLOCK_TEXTURE])
            entries.append((name, grid_x, grid_y, assets_dir / directory / f"{name}.png"))
        self._extract(atlas, entries, cell_size, force, report)
        return report

    def detect_non_empty(self, atlas_path: Union[str, Path], cell_size: int = TERRAIN_CELL_SIZE) -> List[Tuple[int, int]]:
        """
        Find grid cells containing at least one non-transparent pixel.

        Returns:
            (grid_x, grid_y) tuples in row-major order
        """
        atlas = self._load_atlas(atlas_path)
        alpha = np.array(atlas)[:, :, 3]
        rows = alpha.shape[0] // cell_size
        cols = alpha.shape[1] // cell_size
        cells = alpha[:rows * cell_size, :cols * cell_size].reshape(rows, cell_size, cols, cell_size)
        occupied = cells.max(axis=(1, 3)) > 0
        return [(int(x), int(y)) for y, x in zip(*np.nonzero(occupied))]
