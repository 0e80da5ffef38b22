"""
Experiment Runtime
==================

Loads user-authored experiment units and runs participant sessions from them.

Core Components:
- Experiment Registry: Name → module mapping for one session
- Experiment Loader: Sequential, failure-isolated loading of units
- Trial Engine: Headless execution of step timelines
- Session Store: SQLite-backed participant state
- Notification Manager: Participant reminders

License: MIT
"""

__version__ = "1.0.0"

from .core.models import ExperimentModule, ExperimentKind, LoadState, LoadFailure
from .core.registry import ExperimentRegistry
from .core.loader import ExperimentLoader, FileScriptDocument, ScriptDocument, experiment_path
from .session.engine import TrialEngine, DataCollection
from .storage.session_store import SessionStore
from .notifications.manager import NotificationManager
from .app import AppConfig, ExperimentApp

__all__ = [
    "ExperimentModule",
    "ExperimentKind",
    "LoadState",
    "LoadFailure",
    "ExperimentRegistry",
    "ExperimentLoader",
    "FileScriptDocument",
    "ScriptDocument",
    "experiment_path",
    "TrialEngine",
    "DataCollection",
    "SessionStore",
    "NotificationManager",
    "AppConfig",
    "ExperimentApp",
]
