"""
Profile build: run the pipeline into a temporary directory and package the result.
"""

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import PipelineConfig
from .errors import BuildError, ConfigurationError
from .pipeline import AssetPipeline
from .processing.package import PackageManifest, PackPackager, list_profiles, profile_description
from .transformers.base import TransformResult

logger = logging.getLogger(__name__)


@dataclass
class BuildReport:
    """Outcome of building one profile archive."""
    profile_id: str
    description: str
    artifact: Path
    size: int = 0
    result: TransformResult = field(default_factory=TransformResult)

    @property
    def size_kb(self) -> float:
        return self.size / 1024


class PackBuilder:
    """Builds distributable archives for profiles."""

    def __init__(self, config: PipelineConfig, pipeline: Optional[AssetPipeline] = None,
                 packager: Optional[PackPackager] = None):
        self.config = config
        self.pipeline = pipeline or AssetPipeline(config)
        self.packager = packager or PackPackager()

    def available_profiles(self) -> List[str]:
        return list_profiles(self.config.versions_dir, self.config.shared_name)

    def artifact_path(self, profile_id: str) -> Path:
        return Path(self.config.output_dir) / f"{self.config.pack_name}-{profile_id}.zip"

    def describe(self, profile_id: str) -> str:
        fallback = f"{self.config.pack_description} {profile_id}"
        return profile_description(self.config.profile_dir(profile_id), fallback)

    async def build(self, profile_id: str) -> BuildReport:
        """
        Build and package one profile.

        Args:
            profile_id: Profile to build

        Returns:
            BuildReport with artifact path and size

        Raises:
            ConfigurationError: If the profile directory does not exist
            BuildError: If the pipeline fails or the archive cannot be written
        """
        profile_dir = self.config.profile_dir(profile_id)
        if not profile_dir.is_dir():
            raise ConfigurationError(f"Profile directory not found: {profile_dir}", profile_id)

        output_root = Path(self.config.output_dir)
        output_root.mkdir(parents=True, exist_ok=True)
        temp_dir = output_root / f".temp-{profile_id}-{int(time.time() * 1000)}"
        description = self.describe(profile_id)
        artifact = self.artifact_path(profile_id)

        logger.info(f"Building {self.config.pack_name} {profile_id} -> {artifact.name}")
        try:
            result = await self.pipeline.process_profile(profile_id, temp_dir)
            if not result.success:
                raise BuildError(f"Pipeline processing failed: {result.error_message}", profile_id)

            manifest = PackageManifest(
                pack_name=self.config.pack_name,
                profile_id=profile_id,
                description=description,
            )
            size = await asyncio.to_thread(self.packager.create_archive, temp_dir, artifact, manifest)
        finally:
            if temp_dir.exists():
                await asyncio.to_thread(shutil.rmtree, temp_dir, True)

        return BuildReport(
            profile_id=profile_id,
            description=description,
            artifact=artifact,
            size=size,
            result=result,
        )

    def build_sync(self, profile_id: str) -> BuildReport:
        return asyncio.run(self.build(profile_id))
