"""Activity history and user statistics schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# Event types the client may report; enrollment events are written by the service.
CLIENT_EVENT_TYPES = ("SceneLoaded", "ARSceneOpened", "ButtonClick", "AppQuit")
SERVICE_EVENT_TYPES = ("ClassEnrolled", "ClassUnenrolled")


class ActivityEntry(BaseModel):
    entry_id: str
    event_type: str = Field(default="Unknown Event")
    timestamp: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class RecordActivityRequest(BaseModel):
    event_type: str
    scene_name: Optional[str] = None
    button_name: Optional[str] = None

    @field_validator("event_type")
    @classmethod
    def _known_event(cls, value: str) -> str:
        if value not in CLIENT_EVENT_TYPES:
            raise ValueError(
                f"Unsupported event type: {value}. Must be one of {', '.join(CLIENT_EVENT_TYPES)}."
            )
        return value


class UserStatistics(BaseModel):
    user_id: str
    email: Optional[str] = None
    display_name: str
    role: str
    company: Optional[str] = None
    enrolled_classes: List[str]
    total_classes: int
    member_since: str
    last_login: Optional[str] = None
    login_data: str
    history: List[ActivityEntry]
