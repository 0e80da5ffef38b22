"""
Storage components for the experiment runtime.
"""

from .session_store import SessionStore, USER_ID_KEY, NOTIFICATIONS_SETUP_KEY

__all__ = [
    "SessionStore",
    "USER_ID_KEY",
    "NOTIFICATIONS_SETUP_KEY",
]
