"""
Session components: trial engine and timeline assembly.
"""

from .engine import (
    DataCollection,
    StepType,
    TrialEngine,
    first_choice_responder,
    submission_filename,
    trials_to_csv,
)
from .timeline import PROFILE_EXPERIMENT, TimelineBuilder

__all__ = [
    "DataCollection",
    "StepType",
    "TrialEngine",
    "first_choice_responder",
    "submission_filename",
    "trials_to_csv",
    "PROFILE_EXPERIMENT",
    "TimelineBuilder",
]
