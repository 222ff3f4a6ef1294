import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, model_validator


class NotificationType(str, Enum):
    # sent to the adventurer
    EVIDENCE_APPROVED = "evidence_approved"
    EVIDENCE_REJECTED = "evidence_rejected"
    EXTENSION_APPROVED = "extension_approved"
    EXTENSION_DENIED = "extension_denied"
    QUEST_COMPLETED = "quest_completed"
    QUEST_COMPLETION_REJECTED = "quest_completion_rejected"
    DEADLINE_APPROACHING = "deadline_approaching"

    # sent to every game master
    QUEST_ACCEPTED = "quest_accepted"
    EVIDENCE_SUBMITTED = "evidence_submitted"
    EXTENSION_REQUESTED = "extension_requested"
    QUEST_ABANDONED = "quest_abandoned"


class ReferenceType(str, Enum):
    QUEST = "quest"
    USER_QUEST = "user_quest"
    USER_OBJECTIVE = "user_objective"


class NotificationDB(BaseModel):
    user_id: str
    type: NotificationType
    title: str
    message: Optional[str] = None
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[str] = None
    read: bool = False
    read_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime


class NotificationResp(NotificationDB):
    id: str
    link: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def build_link(cls, value):
        if isinstance(value, dict) and not value.get("link"):
            value = dict(value)
            value["link"] = notification_link(value.get("type"), value.get("reference_type"), value.get("reference_id"))
        return value


GM_NOTIFICATION_TYPES = {
    NotificationType.QUEST_ACCEPTED.value,
    NotificationType.EVIDENCE_SUBMITTED.value,
    NotificationType.EXTENSION_REQUESTED.value,
    NotificationType.QUEST_ABANDONED.value,
}


def notification_link(notif_type, reference_type, reference_id) -> Optional[str]:
    notif_type = getattr(notif_type, "value", notif_type)
    reference_type = getattr(reference_type, "value", reference_type)
    if not reference_id:
        return None
    if notif_type in GM_NOTIFICATION_TYPES:
        if notif_type == NotificationType.EVIDENCE_SUBMITTED.value:
            return f"/gm/review/{reference_id}"
        if notif_type == NotificationType.EXTENSION_REQUESTED.value:
            return "/gm/extensions"
        return "/gm/quests"
    if reference_type == ReferenceType.USER_OBJECTIVE.value:
        return "/my-quests"
    return f"/my-quests/{reference_id}"
