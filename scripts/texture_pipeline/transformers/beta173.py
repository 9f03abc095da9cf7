"""
Beta 1.7.3 legacy format transformer.

Block textures are packed into a single 256x256 terrain.png grid; everything else
is copied through unchanged under its relative path.
"""

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from ..processing.atlas import (
    AtlasComposer,
    CoordinateMap,
    index_records_by_name,
    match_default_positions,
)
from ..processing.classifier import AssetKind, texture_name
from ..processing.discovery import AssetRecord
from .base import BuildContext, Transformer, TransformResult

logger = logging.getLogger(__name__)

TERRAIN_MAP_FILENAME = "atlas_coordinates_terrain.json"


class Beta173Transformer(Transformer):
    """Transformer for the Beta 1.7.3 grid-atlas profile."""

    profile_id = "b1.7.3"
    name = "Beta 1.7.3 Legacy Format Transformer"
    aliases = ("b1.7.3", "beta1.7.3")

    def __init__(self, composer: Optional[AtlasComposer] = None,
                 coordinate_search_paths: Sequence[Union[str, Path]] = (),
                 terrain_output: str = "terrain.png",
                 output_format: str = "PNG",
                 compression_level: int = 6):
        """
        Args:
            composer: Atlas composer to use
            coordinate_search_paths: Directories searched in order for a terrain coordinate map
            terrain_output: File name of the composed atlas
            output_format: Image format of the composed atlas
            compression_level: PNG compression level
        """
        self.composer = composer or AtlasComposer()
        self.coordinate_search_paths = [Path(p) for p in coordinate_search_paths]
        self.terrain_output = terrain_output
        self.output_format = output_format
        self.compression_level = compression_level

    def required_kinds(self) -> List[AssetKind]:
        return [AssetKind.BLOCK_TEXTURE, AssetKind.PACK_METADATA]

    def is_applicable(self, profile_id: str) -> bool:
        return profile_id in self.aliases

    def find_coordinate_map(self, context: BuildContext) -> Optional[Path]:
        """Look for a terrain map in the profile directory, then the configured search paths."""
        candidates = [context.source_dir / TERRAIN_MAP_FILENAME]
        candidates += [directory / TERRAIN_MAP_FILENAME for directory in self.coordinate_search_paths]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def transform(self, records: List[AssetRecord], context: BuildContext) -> TransformResult:
        logger.info(f"[{self.profile_id}] Starting transformation with {len(records)} assets")
        result = TransformResult()

        blocks = [r for r in records if r.kind == AssetKind.BLOCK_TEXTURE]
        others = [r for r in records if r.kind != AssetKind.BLOCK_TEXTURE]

        self._build_terrain(blocks, context, result)
        self._copy_through(others, context, result)

        logger.info(
            f"[{self.profile_id}] Transformation finished: {len(result.processed)} processed, "
            f"{len(result.skipped)} skipped"
        )
        return result

    def _plan_terrain(self, blocks: List[AssetRecord], context: BuildContext) -> Tuple[CoordinateMap, dict, List[str]]:
        map_path = self.find_coordinate_map(context)
        if map_path is not None:
            logger.info(f"[{self.profile_id}] Using coordinate map {map_path}")
            coordinate_map = CoordinateMap.from_file(map_path)
            sources, duplicates = index_records_by_name(blocks)
            wanted = set(coordinate_map.names())
            unplaced = [r.relative_path for r in blocks
                        if texture_name(r.relative_path) not in wanted and r.relative_path not in duplicates]
            return coordinate_map, sources, duplicates + unplaced

        logger.info(f"[{self.profile_id}] No coordinate map found, using built-in terrain layout")
        positions, sources, unmatched = match_default_positions(blocks)
        return CoordinateMap.from_positions(positions), sources, unmatched

    def _build_terrain(self, blocks: List[AssetRecord], context: BuildContext, result: TransformResult) -> None:
        if not blocks:
            logger.info(f"[{self.profile_id}] No block textures found, skipping {self.terrain_output}")
            result.add_skipped(self.terrain_output)
            return

        coordinate_map, sources, unplaced = self._plan_terrain(blocks, context)
        for relative_path in unplaced:
            result.add_skipped(relative_path)

        atlas = self.composer.compose_to_file(
            coordinate_map,
            sources,
            context.output_dir / self.terrain_output,
            format=self.output_format,
            compression_level=self.compression_level,
        )
        paths_by_source = {r.source_path: r.relative_path for r in blocks}
        for name in atlas.skipped:
            relative_path = paths_by_source.get(sources.get(name))
            if relative_path is not None:
                result.add_skipped(relative_path)
            else:
                logger.debug(f"[{self.profile_id}] No block texture provides '{name}'")
        for key in atlas.out_of_bounds:
            result.warnings.append(f"coordinate {key} is outside the terrain grid")
            name = coordinate_map.positions.get(key)
            relative_path = paths_by_source.get(sources.get(name))
            if relative_path is not None and name not in atlas.placed:
                result.add_skipped(relative_path)

        if atlas.is_empty:
            result.add_skipped(self.terrain_output)
        else:
            logger.info(f"[{self.profile_id}] Generated {self.terrain_output} with {len(atlas.placed)} textures")
            result.add_processed(self.terrain_output)

    def _copy_through(self, records: List[AssetRecord], context: BuildContext, result: TransformResult) -> None:
        for record in records:
            target = context.output_dir / record.relative_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(record.source_path, target)
            except OSError as e:
                logger.warning(f"[{self.profile_id}] Could not copy {record.relative_path}: {e}")
                result.add_skipped(record.relative_path)
                continue
            logger.debug(f"[{self.profile_id}] Copied {record.relative_path}")
            result.add_processed(record.relative_path)
