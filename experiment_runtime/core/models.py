"""
Core Data Models for the Experiment Runtime
===========================================

Implements:
- ExperimentKind: Tag distinguishing modules with an identity check
- ExperimentModule: Capability bundle defined by an experiment unit
- LoadState: Per-name load state
- LoadRecord: Outcome of loading a single experiment unit
- LoadFailure: Raised when a unit fails to load
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
from enum import Enum
from datetime import datetime
import inspect


Step = Dict[str, Any]
UserIdCheck = Callable[[], Union[Optional[str], Awaitable[Optional[str]]]]


class ExperimentKind(Enum):
    """
    Variants of experiment modules.

    - PLAIN: Only produces trial steps
    - IDENTIFIED: Also knows how to look up a previously stored user ID
    """
    PLAIN = "plain"
    IDENTIFIED = "identified"


class LoadState(Enum):
    """
    Load states for a requested experiment name.

    State Transitions:
    PENDING → LOADING → LOADED | FAILED
    """
    PENDING = "pending"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


class LoadFailure(Exception):
    """
    A unit could not be loaded.

    Only the path is carried. Whatever the host reported is chained as
    ``__cause__``; callers attach their own context.
    """

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path


@dataclass
class ExperimentModule:
    """
    Capability bundle supplied by an experiment unit.

    Attributes:
        run: Given the trial engine, returns the ordered list of step descriptors
        check_user_id: Optional lookup of a previously stored identifier,
            synchronous or returning an awaitable
        metadata: Free-form information the unit wants to expose
    """
    run: Callable[[Any], List[Step]]
    check_user_id: Optional[UserIdCheck] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not callable(self.run):
            raise TypeError("Experiment module requires a callable 'run'")
        if self.check_user_id is not None and not callable(self.check_user_id):
            raise TypeError("'check_user_id' must be callable when provided")

    @property
    def kind(self) -> ExperimentKind:
        if self.check_user_id is None:
            return ExperimentKind.PLAIN
        return ExperimentKind.IDENTIFIED

    @property
    def has_identity_check(self) -> bool:
        return self.kind == ExperimentKind.IDENTIFIED

    async def resolve_user_id(self) -> Optional[str]:
        """
        Look up the stored user ID through ``check_user_id``.

        Returns:
            The identifier, or None for PLAIN modules and empty lookups
        """
        if self.check_user_id is None:
            return None

        value = self.check_user_id()
        if inspect.isawaitable(value):
            value = await value
        return value or None

    @classmethod
    def from_exports(cls, exports: Dict[str, Any]) -> Optional["ExperimentModule"]:
        """
        Build a module from the namespace an evaluated unit leaves behind.

        A unit either defines ``experiment`` as a ready ExperimentModule, or
        defines a top-level ``run`` (and optionally ``check_user_id``).

        Args:
            exports: Global namespace of the evaluated unit

        Returns:
            ExperimentModule, or None if the unit defines neither form
        """
        experiment = exports.get("experiment")
        if isinstance(experiment, cls):
            return experiment

        run = exports.get("run")
        if not callable(run):
            return None

        metadata = exports.get("METADATA") or {}
        if not isinstance(metadata, Mapping):
            raise TypeError("'METADATA' must be a mapping when provided")

        return cls(
            run=run,
            check_user_id=exports.get("check_user_id"),
            metadata=dict(metadata),
        )


@dataclass
class LoadRecord:
    """Outcome of one experiment name within a load request."""
    name: str
    path: str
    state: LoadState = LoadState.PENDING
    error: Optional[LoadFailure] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "state": self.state.value,
            "error": str(self.error.__cause__ or self.error) if self.error else None,
            "duration_ms": self.duration_ms,
        }
