"""
Texture pipeline coordinator.
Discovers shared assets, hands them to the profile's transformer inside a scratch
context and reconciles profile-specific overrides into the output.
"""

import asyncio
import fnmatch
import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from .config import PipelineConfig
from .errors import ConfigurationError
from .processing.atlas import AtlasComposer
from .processing.classifier import AssetKind
from .processing.discovery import AssetDiscovery, AssetRecord, DiscoveryResult
from .transformers.base import BuildContext, Transformer, TransformerRegistry, TransformResult

logger = logging.getLogger(__name__)

METADATA_KINDS = {AssetKind.PACK_METADATA, AssetKind.PACK_CONFIG}

# Build inputs that live in profile directories but never ship in the pack
PROFILE_BUILD_INPUTS = ("atlas_coordinates_*.json",)


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Set up logging for the pipeline."""
    pipeline_logger = logging.getLogger("texture_pipeline")
    pipeline_logger.setLevel(level)

    if not pipeline_logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        pipeline_logger.addHandler(handler)

    return pipeline_logger


def create_default_registry(config: PipelineConfig) -> TransformerRegistry:
    """Registry with every built-in transformer, configured from the pipeline config."""
    from .transformers.beta173 import Beta173Transformer

    registry = TransformerRegistry()
    registry.register(Beta173Transformer(
        composer=AtlasComposer(placeholder_path=config.placeholder_path),
        coordinate_search_paths=[config.coordinates_dir],
        terrain_output=config.terrain_output,
        output_format=config.output_format,
        compression_level=config.compression_level,
    ))
    return registry


class AssetPipeline:
    """
    Runs one profile build: discovery, filtering, transform and override reconciliation.

    Failures never escape process_profile; they come back as a failed TransformResult.
    """

    def __init__(self, config: PipelineConfig, registry: Optional[TransformerRegistry] = None):
        """
        Initialize the texture pipeline.

        Args:
            config: Pipeline configuration
            registry: Transformer registry; defaults to the built-in transformers
        """
        self.config = config
        self.registry = registry if registry is not None else create_default_registry(config)

    def register_transformer(self, transformer: Transformer) -> None:
        self.registry.register(transformer)

    def available_profiles(self) -> List[str]:
        return self.registry.profile_ids()

    def discover_all(self) -> DiscoveryResult:
        """Discover the shared asset tree plus loose files next to it (pack.txt, pack.png, ...)."""
        assets = AssetDiscovery(self.config.shared_assets_dir).discover()
        loose = AssetDiscovery(self.config.shared_dir).discover(exclude_dirs=[self.config.assets_subdir])
        return assets.merge(loose)

    @staticmethod
    def filter_records(records: List[AssetRecord], transformer: Transformer) -> List[AssetRecord]:
        """Keep the kinds the transformer requires plus the metadata kinds."""
        wanted: Set[AssetKind] = set(transformer.required_kinds()) | METADATA_KINDS
        return [r for r in records if r.kind in wanted]

    async def process_profile(self, profile_id: str, output_dir: Union[str, Path]) -> TransformResult:
        """
        Build one profile into output_dir.

        Args:
            profile_id: Profile to build
            output_dir: Directory receiving the transformed files

        Returns:
            TransformResult for the run
        """
        logger.info(f"Processing profile: {profile_id}")

        transformer = self.registry.resolve(profile_id)
        if transformer is None:
            error = ConfigurationError(f"No transformer registered for profile: {profile_id}", profile_id)
            logger.error(str(error))
            return TransformResult.failure(error)

        output_dir = Path(output_dir)
        scratch_dir: Optional[Path] = None
        cleanup_error: Optional[str] = None
        try:
            discovery = await asyncio.to_thread(self.discover_all)
            records = self.filter_records(discovery.records, transformer)

            output_dir.mkdir(parents=True, exist_ok=True)
            scratch_dir = self._create_scratch_dir(profile_id, output_dir)
            context = BuildContext(
                profile_id=profile_id,
                source_dir=self.config.profile_dir(profile_id),
                output_dir=output_dir,
                scratch_dir=scratch_dir,
            )

            logger.info(f"Processing {len(records)} assets with transformer: {transformer.name}")
            result = await asyncio.to_thread(transformer.transform, records, context)

            if result.success:
                await asyncio.to_thread(self._reconcile_profile_files, context, result)

            logger.info(
                f"Transformation complete. Processed: {len(result.processed)}, "
                f"Skipped: {len(result.skipped)}"
            )
        except Exception as e:
            logger.error(f"Profile {profile_id} failed: {e}")
            result = TransformResult.failure(e)
        finally:
            if scratch_dir is not None:
                cleanup_error = self._remove_scratch_dir(scratch_dir)

        if cleanup_error:
            result.warnings.append(cleanup_error)
        return result

    def process_profile_sync(self, profile_id: str, output_dir: Union[str, Path]) -> TransformResult:
        """Blocking wrapper around process_profile for callers without an event loop."""
        return asyncio.run(self.process_profile(profile_id, output_dir))

    async def asset_summary(self) -> Dict[str, object]:
        discovery = await asyncio.to_thread(AssetDiscovery(self.config.shared_assets_dir).discover)
        return {
            "total_assets": len(discovery.records),
            "total_files": discovery.total_files,
            "asset_kinds": sorted(kind.value for kind in discovery.kinds_seen),
        }

    def _create_scratch_dir(self, profile_id: str, output_dir: Path) -> Path:
        # Unique per run so a queued rerun never collides with an in-flight one
        stamp = datetime.now().strftime('%Y%m%d%H%M%S%f')
        root = output_dir.parent if output_dir.parent != output_dir else output_dir
        return Path(tempfile.mkdtemp(prefix=f".scratch-{profile_id}-{stamp}-", dir=root))

    def _remove_scratch_dir(self, scratch_dir: Path) -> Optional[str]:
        try:
            shutil.rmtree(scratch_dir)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not remove scratch directory {scratch_dir}: {e}")
            return f"scratch cleanup failed: {e}"
        return None

    def _reconcile_profile_files(self, context: BuildContext, result: TransformResult) -> None:
        """Copy profile files the transform did not produce into the output."""
        profile_dir = context.source_dir
        if not profile_dir.is_dir():
            return

        produced = set(result.processed)
        for source in sorted(p for p in profile_dir.rglob('*') if p.is_file()):
            relative_path = source.relative_to(profile_dir).as_posix()
            if relative_path in produced:
                continue
            if any(fnmatch.fnmatch(source.name, pattern) for pattern in PROFILE_BUILD_INPUTS):
                continue
            target = context.output_dir / relative_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            except OSError as e:
                logger.warning(f"Could not copy profile file {relative_path}: {e}")
                result.add_skipped(relative_path)
                continue
            result.add_processed(relative_path)
