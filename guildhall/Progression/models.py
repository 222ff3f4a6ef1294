import datetime
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, model_validator


class UserQuestStatus(str, Enum):
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    READY_TO_CLAIM = "ready_to_claim"
    AWAITING_FINAL_APPROVAL = "awaiting_final_approval"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    EXPIRED = "expired"


class UserObjectiveStatus(str, Enum):
    LOCKED = "locked"
    AVAILABLE = "available"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    # legacy rows only; a GM rejection resets to AVAILABLE
    REJECTED = "rejected"


class EvidenceType(str, Enum):
    NONE = "none"
    TEXT = "text"
    LINK = "link"
    TEXT_OR_LINK = "text_or_link"


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


# requests
class AcceptQuestParam(BaseModel):
    exclusive_code: Optional[str] = None


class EvidenceParam(BaseModel):
    text: Optional[str] = None
    url: Optional[str] = None


class ReviewParam(BaseModel):
    decision: ReviewDecision
    feedback: Optional[str] = None


class QuestCompletionReviewParam(BaseModel):
    approved: bool
    feedback: Optional[str] = None


class ExtensionRequestParam(BaseModel):
    reason: str


class ExtensionDecisionParam(BaseModel):
    approved: bool
    new_deadline: Optional[datetime.datetime] = None

    @model_validator(mode="after")
    def deadline_is_aware(self):
        # naive datetimes from forms are taken as UTC
        if self.new_deadline is not None and self.new_deadline.tzinfo is None:
            self.new_deadline = self.new_deadline.replace(tzinfo=datetime.timezone.utc)
        return self


# responses
T = TypeVar("T")


class SuccessResp(BaseModel, Generic[T]):
    success: bool = True
    data: T


class UserObjectiveResp(BaseModel):
    id: str
    user_quest_id: str
    objective_id: str
    depends_on_id: Optional[str] = None
    status: UserObjectiveStatus
    evidence_text: Optional[str] = None
    evidence_url: Optional[str] = None
    submitted_at: Optional[datetime.datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime.datetime] = None
    feedback: Optional[str] = None

    # joined from the objective
    title: Optional[str] = None
    points: int = 0
    display_order: int = 0
    evidence_required: bool = True
    evidence_type: EvidenceType = EvidenceType.TEXT_OR_LINK


class UserQuestResp(BaseModel):
    id: str
    user_id: str
    quest_id: str
    status: UserQuestStatus
    accepted_at: Optional[datetime.datetime] = None
    started_at: Optional[datetime.datetime] = None
    ready_to_claim_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    abandoned_at: Optional[datetime.datetime] = None
    expired_at: Optional[datetime.datetime] = None
    deadline: Optional[datetime.datetime] = None
    extension_requested: bool = False
    extension_reason: Optional[str] = None
    extension_requested_at: Optional[datetime.datetime] = None
    extension_granted: Optional[bool] = None
    extended_deadline: Optional[datetime.datetime] = None
    final_feedback: Optional[str] = None
    points_awarded: Optional[int] = None

    # joined from the quest
    quest_title: Optional[str] = None
    quest_points: int = 0
    objectives_total: int = 0
    objectives_approved: int = 0


class UserQuestDetailResp(UserQuestResp):
    objectives: List[UserObjectiveResp] = Field(default_factory=list)


class ClaimResp(BaseModel):
    user_quest_id: str
    status: UserQuestStatus
    points_awarded: int = 0


class PendingSubmissionResp(UserObjectiveResp):
    user_id: str
    quest_id: str
    quest_title: Optional[str] = None


class ExtensionRequestResp(BaseModel):
    id: str
    user_id: str
    quest_id: str
    quest_title: Optional[str] = None
    extension_reason: Optional[str] = None
    extension_requested_at: Optional[datetime.datetime] = None
    current_deadline: Optional[datetime.datetime] = None
    status: UserQuestStatus


class PendingApprovalResp(BaseModel):
    id: str
    user_id: str
    quest_id: str
    quest_title: Optional[str] = None
    quest_points: int = 0
    ready_to_claim_at: Optional[datetime.datetime] = None
