"""
Experiment Registry
===================

Maps experiment names to the modules their units define:
- Registration (last registration under a name wins)
- Lookup of a single experiment or the whole live mapping
- Reset for test isolation

Duplicate names are overwritten without error; a warning is logged so the
overwrite is at least visible in the session log.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from .models import ExperimentModule

logger = logging.getLogger(__name__)


class ExperimentRegistry:
    """
    Registry of experiment modules for one session.

    The mapping returned by ``get_all`` is the registry's own dict, not a
    copy: mutating it mutates the registry.
    """

    def __init__(self, max_events: int = 1000):
        """
        Initialize the registry.

        Args:
            max_events: Number of registry events kept in ``event_log``
        """
        self.experiments: Dict[str, ExperimentModule] = {}
        self.max_events = max_events

        # Statistics
        self.total_registered = 0
        self.total_overwritten = 0

        self.event_log: List[Dict[str, Any]] = []

    def register(self, name: str, module: ExperimentModule):
        """
        Register an experiment module under ``name``.

        Args:
            name: Experiment name (non-empty)
            module: Module to store
        """
        if not name:
            raise ValueError("Experiment name must be a non-empty string")

        logger.info(f"Registering experiment: {name}")

        if name in self.experiments:
            self.total_overwritten += 1
            logger.warning(f"Experiment {name} already registered, overwriting")

        self.experiments[name] = module
        self.total_registered += 1

        self._log_event("register", name, {
            "kind": getattr(getattr(module, "kind", None), "value", None),
        })

    def get(self, name: str) -> Optional[ExperimentModule]:
        """Get an experiment module by name, or None."""
        return self.experiments.get(name)

    def get_all(self) -> Dict[str, ExperimentModule]:
        """Return the live name → module mapping."""
        return self.experiments

    def names(self) -> List[str]:
        return list(self.experiments)

    def reset(self):
        """Remove every registered experiment, keeping the same mapping object."""
        self.experiments.clear()
        self.event_log.clear()
        self.total_registered = 0
        self.total_overwritten = 0
        logger.debug("Experiment registry reset")

    def __contains__(self, name: str) -> bool:
        return name in self.experiments

    def __len__(self) -> int:
        return len(self.experiments)

    def _log_event(self, event_type: str, name: str, details: Dict[str, Any]):
        """Log a registry event."""
        self.event_log.append({
            "timestamp": datetime.now().isoformat(),
            "event_type": event_type,
            "name": name,
            "details": details,
        })

        if len(self.event_log) > self.max_events:
            self.event_log = self.event_log[-self.max_events:]

    def get_statistics(self) -> Dict[str, Any]:
        """Get registry statistics."""
        identified = sum(
            1 for m in self.experiments.values()
            if getattr(m, "has_identity_check", False)
        )
        return {
            "current_count": len(self.experiments),
            "total_registered": self.total_registered,
            "total_overwritten": self.total_overwritten,
            "identified_count": identified,
            "names": self.names(),
        }
