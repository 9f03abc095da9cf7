"""
Archive packaging and profile metadata for built texture packs.
"""

import logging
import os
import zipfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from jinja2 import Environment, FileSystemLoader, TemplateError

from ..errors import BuildError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "INFO.txt"
MANIFEST_TEMPLATE = "info.txt.j2"
PACK_DESCRIPTOR = "pack.txt"


@dataclass
class PackageManifest:
    """Plain-text manifest appended to every archive."""
    pack_name: str
    profile_id: str
    description: str
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _isoformat(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec='milliseconds') + 'Z'


class PackPackager:
    """Zips a built profile directory and appends the INFO.txt manifest."""

    def __init__(self, template_dir: Optional[Union[str, Path]] = None, compression_level: int = 9):
        """
        Args:
            template_dir: Directory containing Jinja2 templates
            compression_level: Deflate level used for archive members
        """
        if template_dir is None:
            template_dir = Path(__file__).parent.parent / "templates"

        self.template_dir = Path(template_dir)
        self.compression_level = compression_level
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False
        )
        self.env.filters['isoformat'] = _isoformat

    def render_manifest(self, manifest: PackageManifest) -> str:
        """
        Render the manifest text.

        Raises:
            BuildError: If the template is missing or broken
        """
        try:
            template = self.env.get_template(MANIFEST_TEMPLATE)
            return template.render(
                pack_name=manifest.pack_name,
                profile_id=manifest.profile_id,
                description=manifest.description,
                built_at=manifest.built_at,
            )
        except TemplateError as e:
            raise BuildError(f"Could not render {MANIFEST_NAME}: {e}", manifest.profile_id)

    def create_archive(self, source_dir: Union[str, Path], archive_path: Union[str, Path],
                       manifest: PackageManifest) -> int:
        """
        Zip every file under source_dir (paths relative to it) plus the manifest.

        Returns:
            Size of the written archive in bytes
        """
        source_dir = Path(source_dir)
        archive_path = Path(archive_path)
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_text = self.render_manifest(manifest)

        try:
            with zipfile.ZipFile(archive_path, 'w', compression=zipfile.ZIP_DEFLATED,
                                 compresslevel=self.compression_level) as archive:
                for path in self._collect(source_dir):
                    arcname = path.relative_to(source_dir).as_posix()
                    if arcname == MANIFEST_NAME:
                        continue
                    archive.write(path, arcname)
                archive.writestr(MANIFEST_NAME, manifest_text)
        except OSError as e:
            raise BuildError(f"Archive creation failed: {e}", manifest.profile_id)

        size = archive_path.stat().st_size
        logger.info(f"Created {archive_path} ({size / 1024:.2f} KB)")
        return size

    @staticmethod
    def _collect(source_dir: Path) -> List[Path]:
        files = []
        for dirpath, dirnames, filenames in os.walk(source_dir):
            dirnames.sort()
            files.extend(Path(dirpath) / name for name in sorted(filenames))
        return files


def list_profiles(versions_dir: Union[str, Path], shared_name: str = "shared") -> List[str]:
    """Profile directories under versions_dir, sorted, excluding the shared tree."""
    versions_dir = Path(versions_dir)
    if not versions_dir.is_dir():
        return []
    return sorted(p.name for p in versions_dir.iterdir() if p.is_dir() and p.name != shared_name)


def profile_description(profile_dir: Union[str, Path], fallback: str) -> str:
    """
    Read the 'description=' line from a profile's pack.txt.

    Args:
        profile_dir: Profile directory
        fallback: Returned when there is no pack.txt or no description line
    """
    pack_file = Path(profile_dir) / PACK_DESCRIPTOR
    if pack_file.is_file():
        try:
            for line in pack_file.read_text(encoding='utf-8').splitlines():
                if line.startswith('description='):
                    return line[len('description='):].strip()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not read {pack_file}: {e}")
    return fallback
