"""Per-user activity history and statistics."""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytz

from config import ACTIVITY_SUBCOLLECTION, USERS_COLLECTION
from schemas.activity import ActivityEntry, UserStatistics
from schemas.user import UserAccount
from utils.document_store import DocumentSnapshot, DocumentStore

logger = logging.getLogger(__name__)

# Context field shown after the event type, per event
_CONTEXT_FIELDS = {
    "SceneLoaded": "sceneName",
    "ARSceneOpened": "sceneName",
    "ButtonClick": "buttonName",
    "ClassEnrolled": "classCode",
    "ClassUnenrolled": "classCode",
}


def activity_collection(user_id: str) -> str:
    return f"{USERS_COLLECTION}/{user_id}/{ACTIVITY_SUBCOLLECTION}"


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed


class ActivityLog:
    """Writes and reads the ``LogsAR`` history of each user."""

    def __init__(
        self,
        store: DocumentStore,
        clock: Callable[[], datetime] = lambda: datetime.now(pytz.utc),
    ):
        self.store = store
        self._clock = clock

    async def record(self, user_id: str, event_type: str, **context: Any) -> str:
        """Append an entry to a user's history.

        Args:
            user_id: Owner of the history.
            event_type: Event name, e.g. ``ClassEnrolled``.
            **context: Extra camelCase fields such as ``classCode``.

        Returns:
            Id of the new entry.
        """
        entry_id = uuid.uuid4().hex
        fields: Dict[str, Any] = {
            "eventType": event_type,
            "timestamp": self._clock().isoformat(),
        }
        fields.update({k: v for k, v in context.items() if v is not None})
        await self.store.set_document(activity_collection(user_id), entry_id, fields)
        logger.debug("Recorded %s for %s", event_type, user_id)
        return entry_id

    @staticmethod
    def describe(data: Dict[str, Any]) -> str:
        """Render an entry as ``"<eventType>[: <context>] - <timestamp>"``."""
        event_type = data.get("eventType") or "Unknown Event"
        context_field = _CONTEXT_FIELDS.get(event_type)
        context_info = ""
        if context_field and data.get(context_field):
            context_info = f": {data[context_field]}"
        timestamp = _parse_timestamp(data.get("timestamp"))
        rendered = timestamp.strftime("%Y-%m-%d %H:%M:%S") if timestamp else "N/A"
        return f"{event_type}{context_info} - {rendered}"

    def _entry(self, snapshot: DocumentSnapshot) -> ActivityEntry:
        data = snapshot.data
        return ActivityEntry(
            entry_id=snapshot.doc_id,
            event_type=data.get("eventType") or "Unknown Event",
            timestamp=data.get("timestamp"),
            context={k: v for k, v in data.items() if k not in ("eventType", "timestamp")},
            description=self.describe(data),
        )

    async def list_entries(self, user_id: str, limit: Optional[int] = None) -> List[ActivityEntry]:
        """A user's history, newest first."""
        snapshots = await self.store.list_documents(activity_collection(user_id))
        epoch = datetime.min.replace(tzinfo=pytz.utc)
        snapshots.sort(
            key=lambda s: _parse_timestamp(s.get("timestamp")) or epoch,
            reverse=True,
        )
        if limit is not None:
            snapshots = snapshots[:limit]
        return [self._entry(s) for s in snapshots]

    async def build_statistics(self, account: UserAccount) -> UserStatistics:
        """Collect the figures shown on the statistics page."""
        created = _parse_timestamp(account.created_at)
        classes = account.distinct_classes()
        return UserStatistics(
            user_id=account.user_id,
            email=account.email,
            display_name=account.display_name,
            role=account.role,
            company=account.company,
            enrolled_classes=classes,
            total_classes=len(classes),
            member_since=created.strftime("%B %Y") if created else "Unknown",
            last_login=account.last_login,
            login_data="Available" if account.last_login else "No login data",
            history=await self.list_entries(account.user_id),
        )
