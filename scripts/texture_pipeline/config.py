"""
Configuration management for the texture pipeline.
Supports TOML and JSON configuration files with validation, environment
overrides and the project's .hotreloadrc watch settings.
"""

import os
import json
import logging
import tomllib
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Union
from pathlib import Path

logger = logging.getLogger(__name__)

ENV_PREFIX = "TEXTURE_PIPELINE_"
DEFAULT_CONFIG_FILES = (
    "texture_pipeline.toml",
    "texture_pipeline.json",
    "scripts/texture_pipeline.toml",
    "scripts/texture_pipeline.json",
)

DEFAULT_DEBOUNCE_MS = 500
MIN_DEBOUNCE_MS = 100


def _as_bool(value: str) -> bool:
    return value.strip().lower() == 'true'


@dataclass
class PipelineConfig:
    """Main configuration class for the texture pipeline."""

    # Pack identity
    pack_name: str = "Pluie"
    pack_description: str = "A gentle, rain-inspired texture pack for Minecraft"
    default_profile: str = "b1.7.3"

    # Paths
    versions_dir: str = "versions"
    shared_name: str = "shared"
    assets_subdir: str = "assets"
    output_dir: str = "output"
    backups_dir: str = "backups"
    coordinates_dir: str = "."
    deploy_config: str = ".deployrc"
    hotreload_config: str = ".hotreloadrc"

    # Atlas settings
    tile_size: int = 16
    terrain_output: str = "terrain.png"
    placeholder_path: Optional[str] = None

    # Output settings
    output_format: str = "PNG"
    compression_level: int = 6

    # Watch settings
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    deploy_on_change: bool = True
    notifications: bool = True
    watch_all_profiles: bool = False
    close_timeout: float = 5.0

    @property
    def shared_dir(self) -> Path:
        return Path(self.versions_dir) / self.shared_name

    @property
    def shared_assets_dir(self) -> Path:
        return self.shared_dir / self.assets_subdir

    def profile_dir(self, profile_id: str) -> Path:
        return Path(self.versions_dir) / profile_id

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "PipelineConfig":
        """Load configuration from TOML or JSON file."""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix.lower() == '.toml':
            with open(config_path, 'rb') as f:
                data = tomllib.load(f)
        elif config_path.suffix.lower() == '.json':
            with open(config_path, 'r') as f:
                data = json.load(f)
        else:
            raise ValueError(f"Unsupported configuration format: {config_path.suffix}")

        return cls._from_dict(data)

    @classmethod
    def discover(cls, base_dir: Union[str, Path] = ".") -> "PipelineConfig":
        """
        Load the first default config file found under base_dir, else defaults.
        Environment overrides are applied either way.
        """
        for candidate in DEFAULT_CONFIG_FILES:
            path = Path(base_dir) / candidate
            if path.exists():
                logger.debug(f"Using configuration file {path}")
                return cls._apply_env_overrides(cls.from_file(path))
        return cls.default()

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Create configuration from dictionary."""
        config_data: Dict[str, Any] = {}

        if 'pack' in data:
            pack = data['pack']
            config_data['pack_name'] = pack.get('name', cls.pack_name)
            config_data['pack_description'] = pack.get('description', cls.pack_description)
            config_data['default_profile'] = pack.get('default_profile', cls.default_profile)

        if 'paths' in data:
            paths = data['paths']
            for key in ('versions_dir', 'shared_name', 'assets_subdir', 'output_dir', 'backups_dir',
                        'coordinates_dir', 'deploy_config', 'hotreload_config'):
                if key in paths:
                    config_data[key] = paths[key]

        if 'atlas' in data:
            atlas = data['atlas']
            config_data['tile_size'] = atlas.get('tile_size', cls.tile_size)
            config_data['terrain_output'] = atlas.get('terrain_output', cls.terrain_output)
            config_data['placeholder_path'] = atlas.get('placeholder_path')

        if 'output' in data:
            output = data['output']
            config_data['output_format'] = output.get('format', cls.output_format)
            config_data['compression_level'] = output.get('compression_level', cls.compression_level)

        if 'watch' in data:
            watch = data['watch']
            config_data['debounce_ms'] = watch.get('debounce_ms', cls.debounce_ms)
            config_data['deploy_on_change'] = watch.get('deploy_on_change', cls.deploy_on_change)
            config_data['notifications'] = watch.get('notifications', cls.notifications)
            config_data['watch_all_profiles'] = watch.get('watch_all_profiles', cls.watch_all_profiles)
            config_data['close_timeout'] = float(watch.get('close_timeout', cls.close_timeout))

        return cls(**config_data)

    @classmethod
    def default(cls) -> "PipelineConfig":
        """Create default configuration with environment variable overrides."""
        config = cls()
        return cls._apply_env_overrides(config)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables only."""
        config = cls()
        return cls._apply_env_overrides(config)

    @classmethod
    def _apply_env_overrides(cls, config: "PipelineConfig") -> "PipelineConfig":
        """Apply TEXTURE_PIPELINE_* environment variable overrides to configuration."""

        def env(name: str) -> Optional[str]:
            return os.getenv(f"{ENV_PREFIX}{name}")

        # Pack identity
        if env('PACK_NAME'):
            config.pack_name = env('PACK_NAME')
        if env('PACK_DESCRIPTION'):
            config.pack_description = env('PACK_DESCRIPTION')
        if env('DEFAULT_PROFILE'):
            config.default_profile = env('DEFAULT_PROFILE')

        # Paths
        for field_name in ('versions_dir', 'output_dir', 'backups_dir', 'coordinates_dir',
                           'deploy_config', 'hotreload_config'):
            value = env(field_name.upper())
            if value:
                setattr(config, field_name, value)

        # Atlas and output
        if env('TILE_SIZE'):
            config.tile_size = int(env('TILE_SIZE'))
        if env('PLACEHOLDER_PATH'):
            config.placeholder_path = env('PLACEHOLDER_PATH')
        if env('OUTPUT_FORMAT'):
            config.output_format = env('OUTPUT_FORMAT')
        if env('COMPRESSION_LEVEL'):
            config.compression_level = int(env('COMPRESSION_LEVEL'))

        # Watch
        if env('DEBOUNCE_MS'):
            config.debounce_ms = int(env('DEBOUNCE_MS'))
        if env('DEPLOY_ON_CHANGE'):
            config.deploy_on_change = _as_bool(env('DEPLOY_ON_CHANGE'))
        if env('NOTIFICATIONS'):
            config.notifications = _as_bool(env('NOTIFICATIONS'))
        if env('WATCH_ALL_PROFILES'):
            config.watch_all_profiles = _as_bool(env('WATCH_ALL_PROFILES'))

        return config

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.pack_name:
            errors.append("pack_name must not be empty")

        if self.tile_size <= 0:
            errors.append("tile_size must be positive")

        if not 0 <= self.compression_level <= 9:
            errors.append("compression_level must be between 0 and 9")

        if self.output_format.upper() not in ['PNG', 'WEBP']:
            errors.append("output_format must be PNG or WEBP")

        if self.debounce_ms < MIN_DEBOUNCE_MS:
            errors.append(f"debounce_ms must be at least {MIN_DEBOUNCE_MS}")

        if self.close_timeout <= 0:
            errors.append("close_timeout must be positive")

        if self.shared_name in ('', '.', '..'):
            errors.append("shared_name must name a directory")

        return errors

    def apply_hotreload_rc(self, path: Optional[Union[str, Path]] = None) -> "PipelineConfig":
        """
        Overlay watch settings from a .hotreloadrc file.

        A missing file leaves the configuration untouched.
        """
        rc_path = Path(path) if path else Path(self.hotreload_config)
        settings = HotReloadSettings.from_file(rc_path, defaults=HotReloadSettings(
            deploy_on_change=self.deploy_on_change,
            debounce_ms=self.debounce_ms,
            notifications=self.notifications,
            watch_all_profiles=self.watch_all_profiles,
        ))
        self.deploy_on_change = settings.deploy_on_change
        self.debounce_ms = settings.debounce_ms
        self.notifications = settings.notifications
        self.watch_all_profiles = settings.watch_all_profiles
        return self


@dataclass
class HotReloadSettings:
    """Watch settings read from .hotreloadrc."""
    deploy_on_change: bool = True
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    notifications: bool = True
    watch_all_profiles: bool = False

    @classmethod
    def parse(cls, content: str, defaults: Optional["HotReloadSettings"] = None) -> "HotReloadSettings":
        """
        Parse key=value lines. '#' starts a comment line; unknown keys and
        malformed lines are logged and ignored.
        """
        base = defaults or cls()
        settings = cls(**vars(base))

        for line_number, raw_line in enumerate(content.splitlines(), start=1):
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue

            key, sep, value = line.partition('=')
            if not sep or not key.strip():
                logger.warning(f"Invalid config line {line_number}: {line}")
                continue

            key = key.strip().lower()
            value = value.strip()

            if key == 'deploy_on_change':
                settings.deploy_on_change = _as_bool(value)
            elif key == 'debounce_ms':
                try:
                    settings.debounce_ms = max(MIN_DEBOUNCE_MS, int(value))
                except ValueError:
                    settings.debounce_ms = DEFAULT_DEBOUNCE_MS
            elif key == 'notifications':
                settings.notifications = _as_bool(value)
            elif key in ('watch_all_profiles', 'watch_all_versions'):
                settings.watch_all_profiles = _as_bool(value)
            else:
                logger.warning(f"Unknown config key: {key}")

        return settings

    @classmethod
    def from_file(cls, path: Union[str, Path],
                  defaults: Optional["HotReloadSettings"] = None) -> "HotReloadSettings":
        path = Path(path)
        if not path.exists():
            return cls(**vars(defaults)) if defaults else cls()
        return cls.parse(path.read_text(encoding='utf-8'), defaults)
