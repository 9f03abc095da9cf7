"""
Exception hierarchy for the texture pipeline.
"""

from typing import Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, profile: Optional[str] = None, recoverable: bool = False):
        super().__init__(message)
        self.message = message
        self.profile = profile
        self.recoverable = recoverable


class ConfigurationError(PipelineError):
    """Exception raised for unknown profiles, missing transformers or malformed config files."""

    def __init__(self, message: str, profile: Optional[str] = None):
        super().__init__(f"Configuration error: {message}", profile, recoverable=False)


class CoordinateMapError(ConfigurationError):
    """Exception raised when a coordinate map file is malformed."""

    def __init__(self, message: str, path: Optional[str] = None):
        detail = f"{path}: {message}" if path else message
        super().__init__(f"invalid coordinate map {detail}")
        self.path = path


class TransformError(PipelineError):
    """Exception raised inside a transformer for faults it cannot recover from."""


class BuildError(PipelineError):
    """Exception raised when a profile build or its packaging fails."""


class DeployError(PipelineError):
    """Exception raised when a deploy target cannot be used."""


class DecompositionError(PipelineError):
    """Exception raised when an atlas cannot be read for decomposition."""
