"""
Deployment of built archives to install locations.

Targets come from a .deployrc file with one 'profile=path[:option,value...]' line
per profile. An existing archive at the target is backed up before being replaced.
"""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from ..errors import ConfigurationError, DeployError

logger = logging.getLogger(__name__)


@dataclass
class DeployTarget:
    """Install location for one profile."""
    profile_id: str
    path: Path
    backup: bool = True
    options: Dict[str, Union[bool, str]] = field(default_factory=dict)


def _parse_option_value(value: str) -> Union[bool, str]:
    normalized = value.strip().lower()
    if normalized in ('true', 'false'):
        return normalized == 'true'
    return value.strip()


def parse_deploy_config(content: str) -> Dict[str, DeployTarget]:
    """
    Parse .deployrc content.

    Blank lines and '#' comments are ignored; malformed lines are logged and skipped.
    Segments after the path of the form 'key,value' are options; 'backup' defaults to true.
    """
    targets: Dict[str, DeployTarget] = {}

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        profile_id, sep, rest = line.partition('=')
        if not sep or not profile_id.strip() or not rest.strip():
            logger.warning(f"Invalid config line {line_number}: {line}")
            continue

        path_parts = []
        options: Dict[str, Union[bool, str]] = {}
        for segment in rest.split(':'):
            key, comma, value = segment.partition(',')
            if path_parts and comma and key.strip() and value.strip():
                options[key.strip()] = _parse_option_value(value)
            else:
                path_parts.append(segment)

        backup = options.pop('backup', True)
        targets[profile_id.strip()] = DeployTarget(
            profile_id=profile_id.strip(),
            path=Path(':'.join(path_parts).strip()),
            backup=backup if isinstance(backup, bool) else True,
            options=options,
        )

    return targets


def load_deploy_config(path: Union[str, Path]) -> Dict[str, DeployTarget]:
    """
    Read and parse a .deployrc file.

    Raises:
        ConfigurationError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Deploy configuration file not found: {path}")
    return parse_deploy_config(path.read_text(encoding='utf-8'))


class Deployer:
    """Copies built archives into deploy targets, with timestamped backups."""

    def __init__(self, backups_dir: Union[str, Path], pack_name: str = "Pluie"):
        self.backups_dir = Path(backups_dir)
        self.pack_name = pack_name

    def backup(self, existing: Path, profile_id: str) -> Optional[Path]:
        """
        Copy an existing archive into the backups directory.

        Returns:
            Path of the backup, or None when the copy failed
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H-%M-%S-%fZ')
        backup_path = self.backups_dir / f"{self.pack_name}-{profile_id}-backup-{timestamp}.zip"
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(existing, backup_path)
        except OSError as e:
            logger.warning(f"Failed to create backup for {profile_id}: {e}")
            return None
        logger.info(f"Backed up to: {backup_path}")
        return backup_path

    def deploy(self, profile_id: str, artifact: Union[str, Path], target: DeployTarget) -> Path:
        """
        Install an artifact into the target directory.

        Args:
            profile_id: Profile the artifact was built for
            artifact: Built archive
            target: Deploy target for the profile

        Returns:
            Path of the deployed file

        Raises:
            DeployError: If the artifact is missing or cannot be copied
        """
        artifact = Path(artifact)
        if not artifact.is_file():
            raise DeployError(f"Artifact not found: {artifact}", profile_id)

        destination = target.path / artifact.name
        try:
            if not target.path.exists():
                target.path.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created directory: {target.path}")

            if target.backup and destination.exists():
                self.backup(destination, profile_id)

            shutil.copyfile(artifact, destination)
        except OSError as e:
            raise DeployError(f"Failed to deploy {profile_id}: {e}", profile_id)

        logger.info(f"Deployed to: {destination}")
        return destination
