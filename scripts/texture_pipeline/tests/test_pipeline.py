"""
Tests for the pipeline orchestrator.
"""

import asyncio
import json
import shutil
import tempfile
import unittest
from pathlib import Path
from typing import List
from unittest.mock import patch

from PIL import Image

from ..config import PipelineConfig
from ..errors import ConfigurationError, TransformError
from ..pipeline import AssetPipeline, create_default_registry
from ..processing.classifier import AssetKind
from ..processing.discovery import AssetRecord
from ..transformers.base import BuildContext, Transformer, TransformerRegistry, TransformResult


class RecordingTransformer(Transformer):
    """Captures what the orchestrator hands over."""

    profile_id = "b1.7.3"
    name = "recording"

    def __init__(self, error: Exception = None):
        self.error = error
        self.records: List[AssetRecord] = []
        self.context: BuildContext = None

    def required_kinds(self) -> List[AssetKind]:
        return [AssetKind.BLOCK_TEXTURE]

    def transform(self, records: List[AssetRecord], context: BuildContext) -> TransformResult:
        self.records = records
        self.context = context
        if self.error is not None:
            raise self.error
        return TransformResult()


class PipelineTestCase(unittest.TestCase):
    """Builds a versions/ tree with a shared source and one profile."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.versions = self.temp_dir / "versions"
        self.shared = self.versions / "shared"
        self.profile_dir = self.versions / "b1.7.3"
        self.output = self.temp_dir / "output" / "build"

        self._png(self.shared / "assets" / "blocks" / "grass.png", (0, 200, 0, 255))
        self._png(self.shared / "assets" / "items" / "apple.png", (200, 0, 0, 255))
        self._png(self.shared / "pack.png", (0, 0, 200, 255))
        (self.shared / "pack.txt").write_text("description=Shared")

        self.profile_dir.mkdir(parents=True)
        (self.profile_dir / "pack.txt").write_text("description=Profile")
        (self.profile_dir / "extra").mkdir()
        (self.profile_dir / "extra" / "readme.txt").write_text("override")

        self.config = PipelineConfig(
            versions_dir=str(self.versions),
            output_dir=str(self.temp_dir / "output"),
            coordinates_dir=str(self.temp_dir),
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _png(self, path, color):
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new('RGBA', (16, 16), color).save(path)

    def scratch_dirs(self):
        return [p for p in self.output.parent.iterdir() if p.name.startswith(".scratch-")]


class TestProcessProfile(PipelineTestCase):
    """Test AssetPipeline.process_profile end to end."""

    def test_builds_profile(self):
        pipeline = AssetPipeline(self.config)
        result = pipeline.process_profile_sync("b1.7.3", self.output)

        self.assertTrue(result.success, result.error_message)
        self.assertIn("terrain.png", result.processed)
        self.assertIn("pack.txt", result.processed)
        self.assertIn("extra/readme.txt", result.processed)
        self.assertTrue((self.output / "terrain.png").exists())
        self.assertEqual((self.output / "extra" / "readme.txt").read_text(), "override")
        self.assertFalse(set(result.processed) & set(result.skipped))

    def test_processed_files_are_not_overwritten_by_profile(self):
        AssetPipeline(self.config).process_profile_sync("b1.7.3", self.output)
        self.assertEqual((self.output / "pack.txt").read_text(), "description=Shared")

    def test_unrequired_kinds_are_filtered(self):
        AssetPipeline(self.config).process_profile_sync("b1.7.3", self.output)
        self.assertFalse((self.output / "items" / "apple.png").exists())
        self.assertFalse((self.output / "blocks" / "grass.png").exists())

    def test_coordinate_maps_are_not_shipped(self):
        (self.profile_dir / "atlas_coordinates_terrain.json").write_text(json.dumps({
            "rows": 16, "cols": 16, "tile_size": 16, "coordinates": {"0,0": "grass"},
        }))
        result = AssetPipeline(self.config).process_profile_sync("b1.7.3", self.output)

        self.assertIn("terrain.png", result.processed)
        self.assertFalse((self.output / "atlas_coordinates_terrain.json").exists())

    def test_scratch_dir_removed(self):
        AssetPipeline(self.config).process_profile_sync("b1.7.3", self.output)
        self.assertEqual(self.scratch_dirs(), [])

    def test_missing_transformer(self):
        pipeline = AssetPipeline(self.config)
        result = pipeline.process_profile_sync("9.9", self.output)

        self.assertFalse(result.success)
        self.assertIsInstance(result.error, ConfigurationError)
        self.assertEqual(result.processed, [])
        self.assertEqual(result.skipped, [])
        self.assertFalse(self.output.exists())

    def test_records_and_context(self):
        transformer = RecordingTransformer()
        registry = TransformerRegistry()
        registry.register(transformer)

        result = AssetPipeline(self.config, registry).process_profile_sync("b1.7.3", self.output)

        self.assertTrue(result.success)
        kinds = {r.relative_path: r.kind for r in transformer.records}
        self.assertEqual(kinds, {"blocks/grass.png": AssetKind.BLOCK_TEXTURE,
                                 "pack.txt": AssetKind.PACK_METADATA})
        self.assertEqual(transformer.context.source_dir, self.profile_dir)
        self.assertEqual(transformer.context.output_dir, self.output)
        self.assertTrue(transformer.context.scratch_dir.name.startswith(".scratch-b1.7.3-"))
        self.assertFalse(transformer.context.scratch_dir.exists())

    def test_transformer_exception_becomes_failure(self):
        error = TransformError("atlas exploded", "b1.7.3")
        registry = TransformerRegistry()
        registry.register(RecordingTransformer(error=error))

        result = AssetPipeline(self.config, registry).process_profile_sync("b1.7.3", self.output)

        self.assertFalse(result.success)
        self.assertIs(result.error, error)
        self.assertEqual(self.scratch_dirs(), [])

    def test_cleanup_failure_is_a_warning(self):
        pipeline = AssetPipeline(self.config)
        with patch.object(AssetPipeline, "_remove_scratch_dir", return_value="scratch cleanup failed: busy"):
            result = pipeline.process_profile_sync("b1.7.3", self.output)

        self.assertTrue(result.success)
        self.assertIn("scratch cleanup failed: busy", result.warnings)

    def test_profiles_run_independently(self):
        pipeline = AssetPipeline(self.config)

        async def run_both():
            return await asyncio.gather(
                pipeline.process_profile("b1.7.3", self.temp_dir / "output" / "one"),
                pipeline.process_profile("beta1.7.3", self.temp_dir / "output" / "two"),
            )

        first, second = asyncio.run(run_both())
        self.assertTrue(first.success)
        self.assertTrue(second.success)
        self.assertTrue((self.temp_dir / "output" / "one" / "terrain.png").exists())
        self.assertTrue((self.temp_dir / "output" / "two" / "terrain.png").exists())


class TestPipelineHelpers(PipelineTestCase):
    """Test discovery and registry helpers."""

    def test_discover_all_includes_loose_files(self):
        discovery = AssetPipeline(self.config).discover_all()
        paths = [r.relative_path for r in discovery.records]

        self.assertIn("blocks/grass.png", paths)
        self.assertIn("pack.txt", paths)
        self.assertIn("pack.png", paths)
        self.assertNotIn("assets/blocks/grass.png", paths)

    def test_default_registry(self):
        registry = create_default_registry(self.config)
        self.assertIn("b1.7.3", registry)
        self.assertIn("beta1.7.3", registry)
        self.assertEqual(AssetPipeline(self.config).available_profiles(), ["b1.7.3"])

    def test_asset_summary(self):
        summary = asyncio.run(AssetPipeline(self.config).asset_summary())
        self.assertEqual(summary["total_assets"], 2)
        self.assertEqual(summary["asset_kinds"], ["block_texture", "item_texture"])


if __name__ == '__main__':
    unittest.main()
