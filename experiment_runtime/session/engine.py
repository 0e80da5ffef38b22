"""
Trial Engine
============

Headless engine handed to ``ExperimentModule.run``:
- StepType: Known step descriptor types
- DataCollection: Trial data store with CSV export and summaries
- TrialEngine: Executes a timeline of step descriptors in order
"""

from typing import Any, Callable, Dict, List, Optional, Tuple
from datetime import datetime, timezone
import numpy as np
import logging
import json

logger = logging.getLogger(__name__)

Step = Dict[str, Any]
Responder = Callable[[Step], Tuple[Any, Optional[float]]]


class StepType:
    """Step descriptor ``type`` values understood by the engine."""
    HTML_BUTTON_RESPONSE = "html-button-response"
    SURVEY_TEXT = "survey-text"
    CALL_FUNCTION = "call-function"


def _format_cell(value: Any) -> str:
    """Format one CSV cell."""
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False).replace(",", ";")
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)

    text = str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def trials_to_csv(trials: Optional[List[Dict[str, Any]]]) -> str:
    """
    Convert trial dictionaries to CSV.

    Columns are the sorted union of all trial keys; missing values are empty.

    Args:
        trials: List of trial dictionaries

    Returns:
        CSV text without a trailing newline, or "" for no trials
    """
    if not trials:
        return ""

    headers = sorted({key for trial in trials for key in trial})
    rows = [",".join(headers)]
    for trial in trials:
        rows.append(",".join(_format_cell(trial.get(h)) for h in headers))

    return "\n".join(rows)


def submission_filename(user_id: str, when: Optional[datetime] = None) -> str:
    """
    Name of the CSV file for a participant's session.

    Args:
        user_id: Participant identifier
        when: Timestamp (defaults to now); naive values are taken as UTC

    Returns:
        ``<user_id>_<YYYY-MM-DDTHH-MM-SS-mmmZ>.csv``
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    when = when.astimezone(timezone.utc)

    stamp = when.strftime("%Y-%m-%dT%H-%M-%S") + f"-{when.microsecond // 1000:03d}Z"
    return f"{user_id}_{stamp}.csv"


class DataCollection:
    """
    Trial data recorded during a session.

    Properties added with ``add_properties`` apply to trials already
    recorded and to every trial recorded afterwards.
    """

    def __init__(self):
        self.trials: List[Dict[str, Any]] = []
        self.properties: Dict[str, Any] = {}

    def write(self, trial: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(trial)
        record.update(self.properties)
        self.trials.append(record)
        return record

    def add_properties(self, properties: Dict[str, Any]):
        self.properties.update(properties)
        for trial in self.trials:
            trial.update(properties)

    def get(self) -> "DataCollection":
        return self

    def values(self) -> List[Dict[str, Any]]:
        return [dict(t) for t in self.trials]

    def count(self) -> int:
        return len(self.trials)

    def filter(self, **criteria) -> List[Dict[str, Any]]:
        """Trials whose fields equal every given criterion."""
        return [
            dict(t) for t in self.trials
            if all(t.get(k) == v for k, v in criteria.items())
        ]

    def to_csv(self) -> str:
        return trials_to_csv(self.trials)

    def summarize(self, field: str = "rt") -> Dict[str, Any]:
        """
        Summary statistics for a numeric trial field.

        Non-numeric and missing values are skipped.

        Args:
            field: Trial field to summarize

        Returns:
            Dictionary with count, mean, median, std, min and max
        """
        values = np.array([
            float(t[field]) for t in self.trials
            if isinstance(t.get(field), (int, float)) and not isinstance(t.get(field), bool)
        ])

        if values.size == 0:
            return {"field": field, "count": 0, "mean": None, "median": None,
                    "std": None, "min": None, "max": None}

        return {
            "field": field,
            "count": int(values.size),
            "mean": float(np.mean(values)),
            "median": float(np.median(values)),
            "std": float(np.std(values)),
            "min": float(np.min(values)),
            "max": float(np.max(values)),
        }


def first_choice_responder(step: Step) -> Tuple[Any, Optional[float]]:
    """Answer every step with its first choice (index 0) and no response time."""
    if step.get("choices"):
        return 0, None
    return None, None


class TrialEngine:
    """
    Runs a timeline of step descriptors without a display.

    ``call-function`` steps call their ``func``; every other step is answered
    by the responder.
    """

    def __init__(
        self,
        responder: Optional[Responder] = None,
        on_finish: Optional[Callable[[DataCollection], None]] = None,
    ):
        """
        Initialize the engine.

        Args:
            responder: Produces (response, rt) for a displayed step
            on_finish: Called with the data collection after the last step
        """
        self.responder = responder or first_choice_responder
        self.on_finish = on_finish
        self.data = DataCollection()
        self.timeline: List[Step] = []

    def run(self, timeline: List[Step]) -> DataCollection:
        """
        Execute every step of the timeline in order.

        Args:
            timeline: Step descriptors

        Returns:
            The engine's data collection
        """
        self.timeline = list(timeline)
        logger.info(f"Running {len(self.timeline)} trials")

        for index, step in enumerate(self.timeline):
            step_type = step.get("type")

            if step_type == StepType.CALL_FUNCTION:
                trial = {"trial_type": step_type, "value": step["func"]()}
            else:
                response, rt = self.responder(step)
                trial = {"trial_type": step_type, "response": response, "rt": rt}

            trial.update(step.get("data") or {})
            trial["trial_index"] = index
            trial = self.data.write(trial)

            if step.get("on_finish"):
                step["on_finish"](trial)

        if self.on_finish:
            self.on_finish(self.data)

        return self.data
