# pharmaqms/notifications.py

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .auth import User
from .events import RECORD_CREATED, RECORD_TRANSITIONED, EventBus
from .ids import new_id
from .storage import KeyValueStore, load_collection, load_document, save_collection, save_document

logger = logging.getLogger(__name__)

NOTIFICATIONS_KEY = "pharma_notifications"
PREFS_KEY = "pharma_notification_prefs"
DEFAULT_MAX_ENTRIES = 50

CATEGORIES = ("Deviation", "CAPA", "Task", "Audit")
PRIORITIES = ("Low", "Medium", "High", "Critical")


@dataclass
class NotificationPreferences:
    emailOnCriticalDeviation: bool = True
    emailOnCapaAssignment: bool = True
    emailOnOverdueTask: bool = True
    systemAlertsEnabled: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "NotificationPreferences":
        data = data or {}
        return cls(**{k: bool(data.get(k, v)) for k, v in asdict(cls()).items()})


def should_email(category: str, priority: str, prefs: NotificationPreferences) -> bool:
    """E-mail rule table; everything else stays a system notification."""
    return (
        (category == "Deviation" and priority == "Critical" and prefs.emailOnCriticalDeviation)
        or (category == "CAPA" and prefs.emailOnCapaAssignment)
        or (category == "Task" and priority == "High" and prefs.emailOnOverdueTask)
    )


class NotificationService:
    """
    Derived side-channel for quality alerts. Notifications are kept in a capped
    history (newest first); e-mail dispatch is simulated through the log.
    """

    def __init__(self, store: KeyValueStore, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.store = store
        self.max_entries = max_entries

    def get_preferences(self) -> NotificationPreferences:
        return NotificationPreferences.from_dict(load_document(self.store, PREFS_KEY))

    def save_preferences(self, prefs: NotificationPreferences) -> None:
        save_document(self.store, PREFS_KEY, asdict(prefs))

    def history(self) -> List[Dict]:
        return load_collection(self.store, NOTIFICATIONS_KEY)

    def unread_count(self) -> int:
        return sum(1 for n in self.history() if not n.get("isRead"))

    def notify(self, user: User, category: str, priority: str, title: str, message: str) -> Dict:
        prefs = self.get_preferences()
        email = should_email(category, priority, prefs)
        notification = {
            "id": new_id("NTF"),
            "type": "Email" if email else "System",
            "category": category,
            "priority": priority,
            "title": title,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "isRead": False,
            "recipient": user.email,
        }
        with self.store.lock(NOTIFICATIONS_KEY):
            history = [notification] + self.history()
            save_collection(self.store, NOTIFICATIONS_KEY, history[:self.max_entries])

        if email:
            logger.info(f"[EMAIL SENT TO {user.email or user.username}] "
                        f"subject='CRITICAL QUALITY ALERT: {title}' body='{message}'")
        return notification

    def mark_read(self, notification_id: Optional[str] = None) -> int:
        """Marks one notification (or all when no id is given) as read."""
        with self.store.lock(NOTIFICATIONS_KEY):
            history = self.history()
            changed = 0
            for n in history:
                if not n.get("isRead") and (notification_id is None or n.get("id") == notification_id):
                    n["isRead"] = True
                    changed += 1
            if changed:
                save_collection(self.store, NOTIFICATIONS_KEY, history)
        return changed

    def clear(self) -> None:
        self.store.remove(NOTIFICATIONS_KEY)

    # --- event bus wiring ---

    def handle_event(self, data: Dict) -> None:
        spec = data.get("notification")
        if spec:
            self.notify(data["user"], spec["category"], spec["priority"], spec["title"], spec["message"])

    def subscribe(self, bus: EventBus) -> None:
        # Failures here are logged by the bus and never reach the repository.
        bus.subscribe(RECORD_CREATED, self.handle_event)
        bus.subscribe(RECORD_TRANSITIONED, self.handle_event)
