"""
Core components: experiment modules, registry and loader.
"""

from .models import ExperimentModule, ExperimentKind, LoadState, LoadRecord, LoadFailure
from .registry import ExperimentRegistry
from .loader import (
    EXPERIMENT_PATH_TEMPLATE,
    ExperimentLoader,
    FileScriptDocument,
    ScriptDocument,
    ScriptElement,
    experiment_path,
)

__all__ = [
    "ExperimentModule",
    "ExperimentKind",
    "LoadState",
    "LoadRecord",
    "LoadFailure",
    "ExperimentRegistry",
    "EXPERIMENT_PATH_TEMPLATE",
    "ExperimentLoader",
    "FileScriptDocument",
    "ScriptDocument",
    "ScriptElement",
    "experiment_path",
]
