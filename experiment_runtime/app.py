"""
Experiment App
==============

Complete participant session combining all components:
- Experiment loading and registry
- Participant identification
- Timeline assembly and execution
- Reminder setup
- Session persistence and CSV export

This is the main entry point for running a session.
"""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
import logging

from .core.loader import ExperimentLoader, FileScriptDocument
from .core.registry import ExperimentRegistry
from .notifications.manager import InMemoryNotificationBackend, NotificationBackend, NotificationManager
from .session.engine import DataCollection, TrialEngine, submission_filename
from .session.timeline import PROFILE_EXPERIMENT, TimelineBuilder
from .storage.session_store import USER_ID_KEY, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_EXPERIMENTS = ["profile", "sample-experiment"]
DEFAULT_WWW_ROOT = str(Path(__file__).parent / "www")


@dataclass
class AppConfig:
    """Configuration for the experiment app."""
    # Units
    www_root: str = DEFAULT_WWW_ROOT
    experiments: List[str] = field(default_factory=lambda: list(DEFAULT_EXPERIMENTS))

    # Storage
    db_path: str = "data/sessions.db"
    export_dir: Optional[str] = None

    # Reminders
    reminder_hour: int = 12
    notifications_enabled: bool = True

    def __post_init__(self):
        if not 0 <= self.reminder_hour < 24:
            raise ValueError(f"reminder_hour must be in 0..23, got {self.reminder_hour}")


@dataclass
class SessionResult:
    """Result of one participant session."""
    user_id: Optional[str]
    experiments: List[str]
    failed: List[str]
    trial_count: int
    data: DataCollection
    session_id: int
    export_path: Optional[Path] = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime = field(default_factory=datetime.now)


class ExperimentApp:
    """
    Runs a participant session from the configured experiment units.

    Flow:
    1. Load every configured experiment unit into the registry
    2. Look up an existing participant ID (profile's check, else the store)
    3. Build the timeline and run it on a headless trial engine
    4. Save the session record and optionally export the data as CSV
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        notification_backend: Optional[NotificationBackend] = None,
        responder: Optional[Callable] = None,
    ):
        """
        Initialize the app.

        Args:
            config: App configuration (uses defaults if None)
            notification_backend: Reminder backend; an in-memory one is used
                when notifications are enabled and none is given
            responder: Answers displayed steps (defaults to the first choice)
        """
        self.config = config or AppConfig()
        self.responder = responder

        self.store = SessionStore(self.config.db_path)
        self.registry = ExperimentRegistry()
        self.document = FileScriptDocument(
            self.config.www_root,
            unit_globals={"store": self.store},
        )
        self.loader = ExperimentLoader(self.registry, self.document)

        if notification_backend is None and self.config.notifications_enabled:
            notification_backend = InMemoryNotificationBackend()
        self.notifications = NotificationManager(notification_backend, self.store)

        logger.info("ExperimentApp initialized")

    async def initialize(self) -> SessionResult:
        """
        Run a complete session.

        Returns:
            SessionResult with the collected data
        """
        logger.info("Initializing experiment app...")
        started_at = datetime.now()

        await self.loader.load_experiments(self.config.experiments)
        experiments = self.registry.get_all()
        logger.info(f"Loaded experiments: {list(experiments)}")

        existing_user_id = await self.resolve_existing_user_id()

        engine = TrialEngine(
            responder=self.responder,
            on_finish=lambda data: logger.info("All experiments completed"),
        )
        builder = TimelineBuilder(
            self.store,
            on_user_identified=self._setup_notifications,
            reminder_hour=self.config.reminder_hour,
        )
        timeline = builder.build(experiments, engine, existing_user_id)
        data = engine.run(timeline)

        completed_at = datetime.now()
        failed = self.loader.failed_names()
        session_id = self.store.save_session(
            user_id=builder.user_id,
            started_at=started_at,
            completed_at=completed_at,
            trial_count=data.count(),
            experiments=list(experiments),
            failed=failed,
        )

        export_path = None
        if self.config.export_dir:
            export_path = self.export_data(data, builder.user_id, completed_at)

        return SessionResult(
            user_id=builder.user_id,
            experiments=list(experiments),
            failed=failed,
            trial_count=data.count(),
            data=data,
            session_id=session_id,
            export_path=export_path,
            started_at=started_at,
            completed_at=completed_at,
        )

    async def resolve_existing_user_id(self) -> Optional[str]:
        """Participant ID from a previous session, if any."""
        profile = self.registry.get(PROFILE_EXPERIMENT)
        if profile is not None and getattr(profile, "has_identity_check", False):
            return await profile.resolve_user_id()
        return self.store.get_item(USER_ID_KEY)

    def _setup_notifications(self, user_id: str):
        self.notifications.ensure_daily_reminder(user_id, hour=self.config.reminder_hour)

    def export_data(
        self,
        data: DataCollection,
        user_id: Optional[str],
        when: Optional[datetime] = None,
    ) -> Path:
        """
        Write the session data as CSV into the export directory.

        Returns:
            Path of the written file
        """
        when = when or datetime.now()
        directory = Path(self.config.export_dir)
        directory.mkdir(parents=True, exist_ok=True)

        user_id = user_id or f"unknown_{int(when.timestamp() * 1000)}"
        path = directory / submission_filename(user_id, when.astimezone())
        path.write_text(data.to_csv(), encoding="utf-8")

        logger.info(f"Exported {data.count()} trials to {path}")
        return path

    def get_statistics(self) -> Dict[str, Any]:
        """Get app statistics."""
        return {
            "registry": self.registry.get_statistics(),
            "loads": {
                name: record.to_dict()
                for name, record in self.loader.load_records.items()
            },
            "storage": self.store.get_table_counts(),
            "scheduled_notifications": len(self.notifications.notifications),
        }

    def close(self):
        """Close the app and release resources."""
        self.store.close()
        logger.info("ExperimentApp closed")
