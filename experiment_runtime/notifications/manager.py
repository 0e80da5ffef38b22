"""
Notification Manager
====================

Reminder scheduling for participants:
- One-off, recurring (daily / weekly / every N minutes) and batch reminders
- Daily reminders at fixed times of day
- One-time setup of the daily noon reminder for a participant

Delivery is delegated to a NotificationBackend; the device plugin itself is
not part of this package.
"""

from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timedelta
import logging
import sqlite3

from ..storage.session_store import NOTIFICATIONS_SETUP_KEY, USER_ID_KEY, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "jsPsych Experiment Reminder"
DEFAULT_ICON = "res://icon"


def next_daily_trigger(now: Optional[datetime] = None, hour: int = 12) -> datetime:
    """
    Next occurrence of ``hour``:00.

    Today if the hour has not started yet, otherwise tomorrow.
    """
    now = now or datetime.now()
    trigger = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now.hour >= hour:
        trigger += timedelta(days=1)
    return trigger


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def parse_reminder_time(value: str) -> tuple:
    """Parse ``HH:MM`` into (hour, minute)."""
    try:
        hour_text, minute_text = value.split(":")
        hour, minute = int(hour_text), int(minute_text)
    except ValueError:
        raise ValueError(f"Invalid reminder time {value!r}, expected HH:MM")

    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Reminder time out of range: {value!r}")
    return hour, minute


class NotificationBackend:
    """Delivery mechanism for local notifications."""

    def has_permission(self) -> bool:
        raise NotImplementedError

    def request_permission(self) -> bool:
        raise NotImplementedError

    def schedule(self, notifications: Union[Dict[str, Any], List[Dict[str, Any]]]):
        raise NotImplementedError

    def cancel(self, notification_id: int):
        raise NotImplementedError

    def cancel_all(self):
        raise NotImplementedError

    def get_scheduled(self) -> List[Dict[str, Any]]:
        raise NotImplementedError


class InMemoryNotificationBackend(NotificationBackend):
    """Backend that keeps scheduled notifications in memory."""

    def __init__(self, permission_granted: bool = True, grant_on_request: bool = True):
        self.permission_granted = permission_granted
        self.grant_on_request = grant_on_request
        self.scheduled: List[Dict[str, Any]] = []
        self.schedule_calls: List[Union[Dict[str, Any], List[Dict[str, Any]]]] = []
        self.permission_requests = 0

    def has_permission(self) -> bool:
        return self.permission_granted

    def request_permission(self) -> bool:
        self.permission_requests += 1
        self.permission_granted = self.grant_on_request
        return self.permission_granted

    def schedule(self, notifications):
        self.schedule_calls.append(notifications)
        if isinstance(notifications, list):
            self.scheduled.extend(notifications)
        else:
            self.scheduled.append(notifications)

    def cancel(self, notification_id: int):
        self.scheduled = [n for n in self.scheduled if n.get("id") != notification_id]

    def cancel_all(self):
        self.scheduled = []

    def get_scheduled(self) -> List[Dict[str, Any]]:
        return list(self.scheduled)


class NotificationManager:
    """
    Schedules participant reminders through a backend.

    Keeps its own list of the notifications it scheduled so they can be
    cancelled individually.
    """

    def __init__(
        self,
        backend: Optional[NotificationBackend],
        store: Optional[SessionStore] = None,
        ready: bool = True,
    ):
        """
        Initialize the notification manager.

        Args:
            backend: Delivery backend (None when no plugin is available)
            store: Session store holding the participant ID and setup flag
            ready: Whether the backend can be used right away
        """
        self.backend = backend
        self.store = store
        self.is_ready = ready and backend is not None
        self.notifications: List[Dict[str, Any]] = []
        self._last_id = 0

    def _generate_id(self) -> int:
        candidate = int(datetime.now().timestamp() * 1000)
        self._last_id = max(candidate, self._last_id + 1)
        return self._last_id

    def _build(self, options: Dict[str, Any]) -> Dict[str, Any]:
        notification = {
            "id": options.get("id") or self._generate_id(),
            "title": options.get("title") or DEFAULT_TITLE,
            "text": options.get("text", ""),
            "icon": DEFAULT_ICON,
            "smallIcon": DEFAULT_ICON,
            "data": dict(options.get("data") or {}),
        }
        if options.get("trigger") is not None:
            notification["trigger"] = options["trigger"]
        return notification

    def schedule_notification(self, options: Dict[str, Any]) -> Optional[int]:
        """
        Schedule a single notification.

        Args:
            options: id, title, text, trigger and data (all optional)

        Returns:
            Notification ID, or None if the manager is not ready
        """
        if not self.is_ready:
            logger.warning("Notifications not ready")
            return None

        notification = self._build(options)
        self.backend.schedule(notification)
        self.notifications.append(notification)

        logger.info(f"Scheduled notification {notification['id']}")
        return notification["id"]

    def schedule_recurring_notifications(
        self,
        title: Optional[str] = None,
        text: Optional[str] = None,
        interval: Union[str, int] = "daily",
        start_time: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Schedule a repeating reminder.

        Args:
            title: Notification title
            text: Notification text
            interval: "daily", "weekly" or a number of minutes
            start_time: Time of day (and weekday for weekly) to repeat at

        Returns:
            Notification ID, or None if the manager is not ready
        """
        start_time = start_time or datetime.now()

        if interval == "daily":
            every = {"hour": start_time.hour, "minute": start_time.minute}
        elif interval == "weekly":
            every = {
                "weekday": (start_time.weekday() + 1) % 7,
                "hour": start_time.hour,
                "minute": start_time.minute,
            }
        elif isinstance(interval, int) and not isinstance(interval, bool) and interval > 0:
            every = {"minute": interval}
        else:
            raise ValueError(f"Unsupported reminder interval: {interval!r}")

        return self.schedule_notification({
            "title": title,
            "text": text or "Time to complete your experiment!",
            "trigger": {"every": every},
            "data": {"userId": self.get_user_id(), "interval": interval},
        })

    def schedule_multiple_notifications(self, schedules: List[Dict[str, Any]]) -> List[int]:
        """
        Schedule one notification per entry in a single backend call.

        Args:
            schedules: Entries with ``time`` (ISO string or datetime) and
                optional title, text and experimentId

        Returns:
            IDs of the scheduled notifications
        """
        if not self.is_ready:
            logger.warning("Notifications not ready")
            return []

        batch = []
        for entry in schedules:
            at = entry["time"]
            if isinstance(at, str):
                at = datetime.fromisoformat(at)

            data = {}
            if entry.get("experimentId"):
                data["experimentId"] = entry["experimentId"]

            batch.append(self._build({
                "title": entry.get("title"),
                "text": entry.get("text", "Time to complete your experiment!"),
                "trigger": {"at": at},
                "data": data,
            }))

        self.backend.schedule(batch)
        self.notifications.extend(batch)

        logger.info(f"Scheduled {len(batch)} notifications")
        return [n["id"] for n in batch]

    def cancel_notification(self, notification_id: int):
        if not self.is_ready:
            return
        self.backend.cancel(notification_id)
        self.notifications = [n for n in self.notifications if n.get("id") != notification_id]

    def cancel_all_notifications(self):
        if not self.is_ready:
            return
        self.backend.cancel_all()
        self.notifications = []
        logger.info("Cancelled all notifications")

    def get_scheduled_notifications(self) -> List[Dict[str, Any]]:
        if not self.is_ready:
            return []
        return self.backend.get_scheduled()

    def handle_notification_click(self, notification: Dict[str, Any]) -> Optional[str]:
        """
        Route for a clicked notification.

        Returns:
            ``#experiment/<id>`` when the notification names an experiment
        """
        logger.info(f"Handling notification click: {notification}")

        experiment_id = (notification.get("data") or {}).get("experimentId")
        if experiment_id:
            return f"#experiment/{experiment_id}"
        return None

    def setup_daily_reminders(self, times: List[str]) -> List[int]:
        """
        Schedule a daily reminder at each ``HH:MM`` time.

        Returns:
            IDs of the scheduled reminders
        """
        ids = []
        for value in times:
            hour, minute = parse_reminder_time(value)
            period = time_of_day(hour)

            notification_id = self.schedule_notification({
                "title": DEFAULT_TITLE,
                "text": f"Good {period}! Time for your {period} experiment session.",
                "trigger": {"every": {"hour": hour, "minute": minute}},
                "data": {"userId": self.get_user_id(), "timeOfDay": period},
            })
            if notification_id is not None:
                ids.append(notification_id)

        return ids

    def get_user_id(self) -> str:
        """Stored participant ID, or "unknown"."""
        if self.store is None:
            return "unknown"
        try:
            return self.store.get_item(USER_ID_KEY) or "unknown"
        except sqlite3.Error as e:
            logger.warning(f"Could not read user ID: {e}")
            return "unknown"

    def ensure_daily_reminder(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        hour: int = 12,
    ) -> bool:
        """
        Set up the daily reminder once per installation.

        Args:
            user_id: Participant the reminder addresses
            now: Current time (defaults to now)
            hour: Hour of day to remind at

        Returns:
            True if the reminder was scheduled by this call
        """
        if not self.is_ready:
            logger.info("Notification plugin not available")
            return False

        if self.store is not None and self.store.get_item(NOTIFICATIONS_SETUP_KEY):
            logger.info("Notifications already set up")
            return False

        logger.info("Setting up daily notification...")
        if not self.backend.has_permission() and not self.backend.request_permission():
            logger.info("Notification permission denied")
            return False

        self.cancel_all_notifications()
        self.schedule_recurring_notifications(
            title=DEFAULT_TITLE,
            text=f"Hi {user_id}, time to complete your daily experiment!",
            interval="daily",
            start_time=next_daily_trigger(now, hour),
        )

        if self.store is not None:
            self.store.set_item(NOTIFICATIONS_SETUP_KEY, "true")
        logger.info(f"Daily notification scheduled for {hour:02d}:00")
        return True
