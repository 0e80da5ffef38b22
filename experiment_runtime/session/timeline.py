"""
Timeline assembly for a participant session.

Order: profile (or welcome back), notification settings, every other
experiment in registry order, completion screen.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from ..core.models import ExperimentModule
from ..storage.session_store import USER_ID_KEY, SessionStore
from .engine import StepType, TrialEngine

logger = logging.getLogger(__name__)

PROFILE_EXPERIMENT = "profile"

Step = Dict[str, Any]


class TimelineBuilder:
    """Builds the step list for one session."""

    def __init__(
        self,
        store: SessionStore,
        on_user_identified: Optional[Callable[[str], None]] = None,
        reminder_hour: int = 12,
    ):
        """
        Args:
            store: Session store the captured participant ID is saved to
            on_user_identified: Called with the participant ID once known
            reminder_hour: Hour shown on the notification settings screen
        """
        self.store = store
        self.on_user_identified = on_user_identified
        self.reminder_hour = reminder_hour
        self.user_id: Optional[str] = None

    def build(
        self,
        experiments: Dict[str, ExperimentModule],
        engine: TrialEngine,
        existing_user_id: Optional[str] = None,
    ) -> List[Step]:
        timeline: List[Step] = []
        self.user_id = existing_user_id

        profile = experiments.get(PROFILE_EXPERIMENT)
        if not existing_user_id and profile is not None:
            logger.info("No user ID found, showing profile experiment")
            timeline.extend(profile.run(engine))
            timeline.append(self._capture_user_id_step(engine))
        elif existing_user_id:
            logger.info(f"User ID exists: {existing_user_id}")
            engine.data.add_properties({
                "userId": existing_user_id,
                "profileCompleted": True,
            })
            self._identified(existing_user_id)
            timeline.append(self._welcome_back_step(existing_user_id))

        timeline.append(self._notification_settings_step())

        for name, experiment in experiments.items():
            if name != PROFILE_EXPERIMENT and getattr(experiment, "run", None):
                logger.info(f"Adding experiment: {name}")
                timeline.extend(experiment.run(engine))

        timeline.append(self._completion_step())
        return timeline

    def _identified(self, user_id: str):
        if self.on_user_identified:
            self.on_user_identified(user_id)

    def _capture_user_id_step(self, engine: TrialEngine) -> Step:
        def capture():
            profile_data = next(
                (t for t in engine.data.values() if t.get("userId")), None
            )
            if profile_data is None:
                return None

            self.user_id = profile_data["userId"]
            logger.info(f"Captured userId: {self.user_id}")
            self.store.set_item(USER_ID_KEY, self.user_id)
            engine.data.add_properties({"userId": self.user_id})
            self._identified(self.user_id)
            return self.user_id

        return {"type": StepType.CALL_FUNCTION, "func": capture}

    def _welcome_back_step(self, user_id: str) -> Step:
        return {
            "type": StepType.HTML_BUTTON_RESPONSE,
            "stimulus": (
                "<h2>Welcome Back!</h2>"
                f'<p>Your User ID: <strong style="font-family: monospace;">{user_id}</strong></p>'
                "<p>Press the button below to continue.</p>"
            ),
            "choices": ["Continue"],
        }

    def _notification_settings_step(self) -> Step:
        hour = self.reminder_hour % 12 or 12
        suffix = "AM" if self.reminder_hour < 12 else "PM"
        return {
            "type": StepType.HTML_BUTTON_RESPONSE,
            "stimulus": (
                "<h3>Notification Settings</h3>"
                f"<p>Daily reminders have been scheduled for {hour}:00 {suffix}.</p>"
            ),
            "choices": ["Continue"],
        }

    def _completion_step(self) -> Step:
        def stimulus():
            return (
                '<div style="text-align: center;">'
                "<h2>Experiment Complete!</h2>"
                "<p>Thank you for participating.</p>"
                f"<p>Your User ID: <strong>{self.user_id or 'unknown'}</strong></p>"
                "</div>"
            )

        return {
            "type": StepType.HTML_BUTTON_RESPONSE,
            "stimulus": stimulus,
            "choices": ["Finish"],
        }
