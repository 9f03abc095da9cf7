"""
Abstract base classes for profile transformers.
Defines the interface every per-profile transformer implements and the registry
the orchestrator resolves them from.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..processing.classifier import AssetKind
from ..processing.discovery import AssetRecord


@dataclass
class BuildContext:
    """Ephemeral state for one profile run."""
    profile_id: str
    source_dir: Path
    output_dir: Path
    scratch_dir: Path
    started_at: datetime = field(default_factory=datetime.now)


@dataclass
class TransformResult:
    """
    Outcome of one profile run.

    processed and skipped never share a relative path; together they are the set
    of paths the run examined.
    """
    success: bool = True
    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[BaseException] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, error: BaseException, processed: Sequence[str] = (),
                skipped: Sequence[str] = ()) -> "TransformResult":
        """Create a failed result carrying the error."""
        result = cls(success=False, error=error)
        for path in processed:
            result.add_processed(path)
        for path in skipped:
            result.add_skipped(path)
        return result

    def add_processed(self, relative_path: str) -> None:
        """Record a processed path. A later success overrides an earlier skip."""
        if relative_path in self.processed:
            return
        if relative_path in self.skipped:
            self.skipped.remove(relative_path)
        self.processed.append(relative_path)

    def add_skipped(self, relative_path: str) -> None:
        """Record a skipped path unless it was already processed."""
        if relative_path in self.processed or relative_path in self.skipped:
            return
        self.skipped.append(relative_path)

    @property
    def examined(self) -> List[str]:
        return self.processed + self.skipped

    @property
    def error_message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None


class Transformer(ABC):
    """Abstract base class for profile transformers."""

    profile_id: str = ""
    name: str = ""

    @abstractmethod
    def required_kinds(self) -> List[AssetKind]:
        """
        Asset kinds this transformer consumes.

        Returns:
            Kinds the orchestrator filters the inventory down to (metadata kinds
            are always included on top of these)
        """
        pass

    def is_applicable(self, profile_id: str) -> bool:
        """Check whether this transformer can build the given profile."""
        return profile_id == self.profile_id

    @abstractmethod
    def transform(self, records: List[AssetRecord], context: BuildContext) -> TransformResult:
        """
        Transform the filtered inventory into the context's output directory.

        Args:
            records: Discovered records filtered to the required kinds
            context: Build context for this run

        Returns:
            TransformResult describing processed and skipped files

        Raises:
            TransformError: For faults the transformer cannot recover from
        """
        pass

    def get_transformer_info(self) -> Dict[str, object]:
        """
        Get information about this transformer.

        Returns:
            Dictionary with transformer metadata
        """
        return {
            "profile": self.profile_id,
            "name": self.name or self.__class__.__name__,
            "required_kinds": [kind.value for kind in self.required_kinds()],
        }


class TransformerRegistry:
    """Registry mapping profile identifiers to transformers."""

    def __init__(self):
        """Initialize empty transformer registry."""
        self._transformers: Dict[str, Transformer] = {}

    def register(self, transformer: Transformer) -> None:
        """
        Register a transformer under its profile id.

        Re-registering an id replaces the previous transformer.

        Raises:
            ValueError: If transformer doesn't inherit from Transformer
        """
        if not isinstance(transformer, Transformer):
            raise ValueError(f"Transformer {transformer!r} must inherit from Transformer")
        self._transformers[transformer.profile_id] = transformer

    def unregister(self, profile_id: str) -> Optional[Transformer]:
        return self._transformers.pop(profile_id, None)

    def get(self, profile_id: str) -> Optional[Transformer]:
        """Exact lookup by profile id."""
        return self._transformers.get(profile_id)

    def resolve(self, profile_id: str) -> Optional[Transformer]:
        """
        Find the transformer for a profile.

        Exact registrations win; otherwise the first registered transformer whose
        is_applicable accepts the id is used.
        """
        transformer = self._transformers.get(profile_id)
        if transformer is not None:
            return transformer
        for candidate in self._transformers.values():
            if candidate.is_applicable(profile_id):
                return candidate
        return None

    def list(self) -> List[Transformer]:
        return list(self._transformers.values())

    def profile_ids(self) -> List[str]:
        return list(self._transformers.keys())

    def __contains__(self, profile_id: str) -> bool:
        return self.resolve(profile_id) is not None

    def __len__(self) -> int:
        return len(self._transformers)
