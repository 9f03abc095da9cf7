"""
Tests for coordinate maps, atlas composition and decomposition.
"""

import io
import json
import shutil
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

import numpy as np
from PIL import Image

from ..errors import CoordinateMapError, DecompositionError
from ..processing.atlas import (
    DEFAULT_TERRAIN_POSITIONS,
    PLACEHOLDER_COLOR,
    AtlasComposer,
    AtlasDecomposer,
    CoordinateMap,
    default_terrain_map,
    index_records_by_name,
    match_default_positions,
)
from ..processing.classifier import AssetKind
from ..processing.discovery import AssetMetadata, AssetRecord
from ..utils.image import ImageUtils

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
GREEN = (0, 255, 0, 255)
CLEAR = (0, 0, 0, 0)


def make_record(root: Path, relative_path: str) -> AssetRecord:
    return AssetRecord(
        source_path=root / relative_path,
        relative_path=relative_path,
        kind=AssetKind.BLOCK_TEXTURE,
        metadata=AssetMetadata(last_modified=datetime.now(), format="png", size=0),
    )


class AtlasTestCase(unittest.TestCase):
    """Shared fixtures: a temp dir and solid-colour textures."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def texture(self, name, color, size=4):
        path = self.temp_dir / "src" / f"{name}.png"
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new('RGBA', (size, size), color).save(path)
        return path

    def small_map(self, positions):
        return CoordinateMap(rows=2, cols=2, cell_size=4, positions=positions)


class TestCoordinateMap(AtlasTestCase):
    """Test CoordinateMap parsing."""

    def test_terrain_form(self):
        data = {"rows": 16, "cols": 16, "tile_size": 16,
                "coordinates": {"0,0": "grass", "1,0": "stone", "2,0": "unused"}}
        coordinate_map = CoordinateMap.from_dict(data)

        self.assertEqual(coordinate_map.canvas_size, (256, 256))
        self.assertEqual(coordinate_map.names(), ["grass", "stone"])
        entries = coordinate_map.entries()
        self.assertEqual([(e.name, e.grid_x, e.grid_y) for e in entries],
                         [("grass", 0, 0), ("stone", 1, 0), ("unused", 2, 0)])
        self.assertTrue(entries[2].is_unused)

    def test_item_form_and_remaining_tiles(self):
        data = {"rows": 2, "cols": 2, "tile_size": 4,
                "coordinates": {"apple": [1, 0], "bow": [0, 1], "remaining_tiles": "unused"}}
        coordinate_map = CoordinateMap.from_dict(data)

        self.assertEqual(coordinate_map.positions, {"1,0": "apple", "0,1": "bow"})

    def test_entries_are_row_major(self):
        coordinate_map = self.small_map({"1,1": "d", "0,1": "c", "1,0": "b", "0,0": "a"})
        self.assertEqual([e.name for e in coordinate_map.entries()], ["a", "b", "c", "d"])

    def test_invalid_dimensions(self):
        for bad in ({"cols": 2, "tile_size": 4, "coordinates": {}},
                    {"rows": 0, "cols": 2, "tile_size": 4, "coordinates": {}},
                    {"rows": 2, "cols": "2", "tile_size": 4, "coordinates": {}},
                    {"rows": 2, "cols": 2, "tile_size": True, "coordinates": {}}):
            with self.assertRaises(CoordinateMapError):
                CoordinateMap.from_dict(bad)

    def test_invalid_coordinates(self):
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_dict({"rows": 2, "cols": 2, "tile_size": 4, "coordinates": ["0,0"]})
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_dict({"rows": 2, "cols": 2, "tile_size": 4, "coordinates": {"a,b": "stone"}})
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_dict({"rows": 2, "cols": 2, "tile_size": 4, "coordinates": {"0": "stone"}})
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_dict({"rows": 2, "cols": 2, "tile_size": 4, "coordinates": {"stone": 3}})

    def test_from_file(self):
        path = self.temp_dir / "map.json"
        path.write_text(json.dumps({"rows": 2, "cols": 2, "tile_size": 4, "coordinates": {"0,0": "stone"}}))
        coordinate_map = CoordinateMap.from_file(path)
        self.assertEqual(coordinate_map.source, str(path))
        self.assertEqual(coordinate_map.names(), ["stone"])

    def test_from_file_errors(self):
        broken = self.temp_dir / "broken.json"
        broken.write_text("{not json")
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_file(broken)
        with self.assertRaises(CoordinateMapError):
            CoordinateMap.from_file(self.temp_dir / "missing.json")

    def test_coordinate_map_error_is_configuration_error(self):
        from ..errors import ConfigurationError
        with self.assertRaises(ConfigurationError):
            CoordinateMap.from_dict({"rows": -1, "cols": 2, "tile_size": 4, "coordinates": {}})

    def test_default_terrain_map(self):
        coordinate_map = default_terrain_map()
        self.assertEqual((coordinate_map.rows, coordinate_map.cols, coordinate_map.cell_size), (16, 16, 16))
        self.assertEqual(len(coordinate_map.positions), len(DEFAULT_TERRAIN_POSITIONS))
        self.assertEqual(coordinate_map.positions["0,0"], "grass")
        self.assertTrue(all(coordinate_map.in_bounds(e) for e in coordinate_map.entries()))


class TestAtlasComposer(AtlasTestCase):
    """Test AtlasComposer.compose and compose_to_file."""

    def test_places_textures_and_placeholders(self):
        sources = {"stone": self.texture("stone", RED)}
        coordinate_map = self.small_map({"0,0": "stone", "1,0": "unused"})

        result = AtlasComposer().compose(coordinate_map, sources)

        self.assertEqual(result.atlas.size, (8, 8))
        self.assertEqual(result.atlas.getpixel((0, 0)), RED)
        self.assertEqual(result.atlas.getpixel((4, 0)), PLACEHOLDER_COLOR)
        self.assertEqual(result.atlas.getpixel((7, 3)), PLACEHOLDER_COLOR)
        self.assertEqual(result.atlas.getpixel((0, 4)), CLEAR)
        self.assertEqual(result.placed, ["stone"])
        self.assertEqual(result.placeholders, ["1,0"])
        self.assertEqual(result.frame_map["stone"], {"x": 0, "y": 0, "w": 4, "h": 4})

    def test_placeholder_from_file(self):
        placeholder = self.texture("placeholder", GREEN, size=8)
        sources = {"stone": self.texture("stone", RED)}
        coordinate_map = self.small_map({"0,0": "stone", "1,1": "unused"})

        result = AtlasComposer(placeholder_path=placeholder).compose(coordinate_map, sources)

        self.assertEqual(result.atlas.getpixel((5, 5)), GREEN)

    def test_missing_source_is_skipped(self):
        coordinate_map = self.small_map({"0,0": "stone", "1,0": "dirt"})
        result = AtlasComposer().compose(coordinate_map, {"stone": self.texture("stone", RED)})

        self.assertEqual(result.placed, ["stone"])
        self.assertEqual(result.skipped, ["dirt"])
        self.assertEqual(result.atlas.getpixel((4, 0)), CLEAR)

    def test_undecodable_source_is_skipped(self):
        bad = self.temp_dir / "src" / "bad.png"
        bad.parent.mkdir(parents=True, exist_ok=True)
        bad.write_bytes(b"not an image")
        coordinate_map = self.small_map({"0,0": "bad", "1,0": "stone"})

        result = AtlasComposer().compose(coordinate_map, {"bad": bad, "stone": self.texture("stone", RED)})

        self.assertEqual(result.skipped, ["bad"])
        self.assertEqual(result.placed, ["stone"])

    def test_out_of_bounds_is_ignored(self):
        coordinate_map = self.small_map({"0,0": "stone", "5,5": "dirt", "-1,0": "sand"})
        sources = {
            "stone": self.texture("stone", RED),
            "dirt": self.texture("dirt", BLUE),
            "sand": self.texture("sand", GREEN),
        }

        result = AtlasComposer().compose(coordinate_map, sources)

        self.assertEqual(result.placed, ["stone"])
        self.assertEqual(sorted(result.out_of_bounds), ["-1,0", "5,5"])
        self.assertEqual(result.atlas.size, (8, 8))

    def test_resizes_to_cell(self):
        sources = {"stone": self.texture("stone", RED, size=16)}
        result = AtlasComposer().compose(self.small_map({"1,1": "stone"}), sources)

        self.assertEqual(result.atlas.getpixel((4, 4)), RED)
        self.assertEqual(result.atlas.getpixel((7, 7)), RED)
        self.assertEqual(result.atlas.getpixel((3, 3)), CLEAR)

    def test_duplicate_cell_later_key_wins(self):
        # "0, 0" sorts before "0,0"; both decode to the same cell
        coordinate_map = self.small_map({"0,0": "blue", "0, 0": "red"})
        sources = {"red": self.texture("red", RED), "blue": self.texture("blue", BLUE)}

        result = AtlasComposer().compose(coordinate_map, sources)

        self.assertEqual(result.atlas.getpixel((0, 0)), BLUE)
        self.assertIn("blue", result.frame_map)
        self.assertNotIn("red", result.frame_map)

    def test_unused_entry_replaces_texture(self):
        coordinate_map = self.small_map({"0, 0": "stone", "0,0": "unused", "1,0": "dirt"})
        sources = {"stone": self.texture("stone", RED), "dirt": self.texture("dirt", BLUE)}

        result = AtlasComposer().compose(coordinate_map, sources)

        self.assertEqual(result.atlas.getpixel((0, 0)), PLACEHOLDER_COLOR)
        self.assertEqual(result.placed, ["dirt"])
        self.assertNotIn("stone", result.frame_map)
        self.assertEqual(result.placeholders, ["0,0"])

    def test_only_replaced_textures_is_empty(self):
        coordinate_map = self.small_map({"0, 0": "stone", "0,0": "unused"})
        output = self.temp_dir / "out" / "terrain.png"

        result = AtlasComposer().compose_to_file(coordinate_map, {"stone": self.texture("stone", RED)}, output)

        self.assertTrue(result.is_empty)
        self.assertFalse(output.exists())

    def test_texture_replaces_placeholder(self):
        coordinate_map = self.small_map({"0, 0": "unused", "0,0": "stone"})
        result = AtlasComposer().compose(coordinate_map, {"stone": self.texture("stone", RED)})

        self.assertEqual(result.atlas.getpixel((0, 0)), RED)
        self.assertEqual(result.placeholders, [])
        self.assertEqual(result.placed, ["stone"])

    def test_duplicate_cell_independent_of_key_order(self):
        sources = {"red": self.texture("red", RED), "blue": self.texture("blue", BLUE)}
        first = AtlasComposer().compose(self.small_map({"0, 0": "red", "0,0": "blue"}), sources)
        second = AtlasComposer().compose(self.small_map({"0,0": "blue", "0, 0": "red"}), sources)
        self.assertEqual(first.atlas.tobytes(), second.atlas.tobytes())

    def test_compose_to_file_writes_atlas(self):
        output = self.temp_dir / "out" / "terrain.png"
        result = AtlasComposer().compose_to_file(
            self.small_map({"0,0": "stone"}), {"stone": self.texture("stone", RED)}, output
        )

        self.assertFalse(result.is_empty)
        self.assertEqual(result.output_path, output)
        with Image.open(output) as saved:
            self.assertEqual(saved.size, (8, 8))
            self.assertEqual(saved.convert('RGBA').getpixel((0, 0)), RED)

    def test_placeholders_alone_do_not_produce_a_file(self):
        output = self.temp_dir / "out" / "terrain.png"
        result = AtlasComposer().compose_to_file(
            self.small_map({"0,0": "unused", "1,0": "missing"}), {}, output
        )

        self.assertTrue(result.is_empty)
        self.assertIsNone(result.output_path)
        self.assertFalse(output.exists())


class TestNameMatching(AtlasTestCase):
    """Test record indexing and default-table matching."""

    def test_index_records_first_wins(self):
        records = [make_record(self.temp_dir, "blocks/b/stone.png"),
                   make_record(self.temp_dir, "blocks/a/stone.png"),
                   make_record(self.temp_dir, "blocks/dirt.png")]

        sources, duplicates = index_records_by_name(records)

        self.assertEqual(sources["stone"], self.temp_dir / "blocks/a/stone.png")
        self.assertEqual(duplicates, ["blocks/b/stone.png"])
        self.assertIn("dirt", sources)

    def test_match_default_positions(self):
        records = [make_record(self.temp_dir, "blocks/grass.png"),
                   make_record(self.temp_dir, "blocks/my_stone_variant.png"),
                   make_record(self.temp_dir, "blocks/zzz.png")]

        placed, matched, unmatched = match_default_positions(records)

        self.assertEqual(placed, [("grass", 0, 0), ("stone", 1, 0)])
        self.assertEqual(matched["stone"], self.temp_dir / "blocks/my_stone_variant.png")
        self.assertEqual(unmatched, ["blocks/zzz.png"])

    def test_exact_name_beats_substring(self):
        records = [make_record(self.temp_dir, "blocks/grass_top.png")]
        placed, matched, _ = match_default_positions(records)
        self.assertEqual(placed, [("grass_top", 3, 1)])

    def test_exact_name_claims_slot_before_earlier_substring_match(self):
        records = [make_record(self.temp_dir, "blocks/mossy_stone.png"),
                   make_record(self.temp_dir, "blocks/stone.png")]

        placed, matched, unmatched = match_default_positions(records)

        self.assertEqual(placed, [("stone", 1, 0)])
        self.assertEqual(matched["stone"], self.temp_dir / "blocks/stone.png")
        self.assertEqual(unmatched, ["blocks/mossy_stone.png"])

    def test_slot_used_once(self):
        records = [make_record(self.temp_dir, "blocks/a/stone.png"),
                   make_record(self.temp_dir, "blocks/b/stone.png")]
        placed, matched, unmatched = match_default_positions(records)

        self.assertEqual(placed, [("stone", 1, 0)])
        self.assertEqual(unmatched, ["blocks/b/stone.png"])


class TestAtlasDecomposer(AtlasTestCase):
    """Test slicing atlases back into textures."""

    def compose_sample(self):
        coordinate_map = self.small_map({"0,0": "stone", "1,0": "dirt", "0,1": "unused"})
        sources = {"stone": self.texture("stone", RED), "dirt": self.texture("dirt", BLUE)}
        atlas_path = self.temp_dir / "terrain.png"
        AtlasComposer().compose_to_file(coordinate_map, sources, atlas_path)
        return coordinate_map, sources, atlas_path

    def test_round_trip(self):
        coordinate_map, sources, atlas_path = self.compose_sample()
        output_dir = self.temp_dir / "extracted"

        report = AtlasDecomposer().decompose(atlas_path, coordinate_map, output_dir)

        self.assertEqual(sorted(p.name for p in report.extracted), ["dirt.png", "stone.png"])
        self.assertFalse((output_dir / "unused.png").exists())
        for name, source in sources.items():
            with Image.open(source) as original, Image.open(output_dir / f"{name}.png") as extracted:
                self.assertEqual(original.convert('RGBA').tobytes(), extracted.convert('RGBA').tobytes())

    def test_existing_files_skipped_unless_forced(self):
        coordinate_map, _, atlas_path = self.compose_sample()
        output_dir = self.temp_dir / "extracted"
        output_dir.mkdir()
        Image.new('RGBA', (4, 4), GREEN).save(output_dir / "stone.png")

        report = AtlasDecomposer().decompose(atlas_path, coordinate_map, output_dir)
        self.assertEqual(report.skipped, [output_dir / "stone.png"])
        with Image.open(output_dir / "stone.png") as kept:
            self.assertEqual(kept.convert('RGBA').getpixel((0, 0)), GREEN)

        report = AtlasDecomposer().decompose(atlas_path, coordinate_map, output_dir, force=True)
        self.assertEqual(report.skipped, [])
        with Image.open(output_dir / "stone.png") as replaced:
            self.assertEqual(replaced.convert('RGBA').getpixel((0, 0)), RED)

    def test_cells_outside_atlas_fail(self):
        _, _, atlas_path = self.compose_sample()
        coordinate_map = CoordinateMap(rows=4, cols=4, cell_size=4, positions={"3,3": "far"})

        report = AtlasDecomposer().decompose(atlas_path, coordinate_map, self.temp_dir / "out")

        self.assertEqual(report.failed, ["far"])

    def test_missing_atlas(self):
        with self.assertRaises(DecompositionError):
            AtlasDecomposer().decompose(self.temp_dir / "nope.png", self.small_map({}), self.temp_dir)

    def test_decompose_by_category(self):
        atlas = Image.new('RGBA', (256, 256), (0, 0, 0, 0))
        atlas.paste(Image.new('RGBA', (16, 16), RED), (0, 0))
        atlas_path = self.temp_dir / "terrain.png"
        atlas.save(atlas_path)
        assets_dir = self.temp_dir / "assets"

        report = AtlasDecomposer().decompose_by_category(atlas_path, assets_dir)

        self.assertEqual(len(report.extracted), len(DEFAULT_TERRAIN_POSITIONS))
        self.assertTrue((assets_dir / "blocks" / "grass.png").exists())
        self.assertTrue((assets_dir / "items" / "door_wood_upper.png").exists())
        self.assertTrue((assets_dir / "gui" / "furnace.png").exists())
        self.assertTrue((assets_dir / "environment" / "water.png").exists())
        self.assertTrue((assets_dir / "misc" / "torch.png").exists())

    def test_detect_non_empty(self):
        atlas = Image.new('RGBA', (32, 32), (0, 0, 0, 0))
        atlas.putpixel((20, 3), RED)
        atlas.putpixel((1, 17), (0, 0, 0, 1))
        atlas_path = self.temp_dir / "terrain.png"
        atlas.save(atlas_path)

        cells = AtlasDecomposer().detect_non_empty(atlas_path, cell_size=16)

        self.assertEqual(cells, [(1, 0), (0, 1)])

    def test_detect_non_empty_matches_numpy_scan(self):
        _, _, atlas_path = self.compose_sample()
        cells = AtlasDecomposer().detect_non_empty(atlas_path, cell_size=4)

        alpha = np.array(Image.open(atlas_path).convert('RGBA'))[:, :, 3]
        expected = [(x, y) for y in range(2) for x in range(2) if alpha[y * 4:(y + 1) * 4, x * 4:(x + 1) * 4].any()]
        self.assertEqual(cells, expected)
        self.assertIn((0, 1), cells)


class TestImageUtils(AtlasTestCase):
    """Test the encode and save helpers."""

    def test_encode_png(self):
        data = ImageUtils.encode_png(Image.new('RGBA', (2, 2), RED))

        self.assertTrue(data.startswith(b"\x89PNG"))
        with Image.open(io.BytesIO(data)) as decoded:
            self.assertEqual(decoded.convert('RGBA').getpixel((1, 1)), RED)

    def test_save_image_creates_parent(self):
        path = self.temp_dir / "nested" / "tile.png"
        ImageUtils.save_image(Image.new('RGBA', (2, 2), BLUE), path, compress_level=9)

        self.assertEqual(ImageUtils.load_image(path).getpixel((0, 0)), BLUE)


if __name__ == '__main__':
    unittest.main()
