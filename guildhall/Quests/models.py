import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..Progression.models import EvidenceType


class QuestStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestDifficulty(str, Enum):
    APPRENTICE = "Apprentice"
    JOURNEYMAN = "Journeyman"
    EXPERT = "Expert"
    MASTER = "Master"


class Quest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    points: int = Field(default=100, ge=0, le=10000)
    difficulty: QuestDifficulty = QuestDifficulty.APPRENTICE
    completion_days: Optional[int] = Field(default=None, ge=1, le=365)
    acceptance_deadline: Optional[datetime.datetime] = None
    is_exclusive: bool = False
    exclusive_code: Optional[str] = Field(default=None, max_length=50)
    requires_final_approval: Optional[bool] = None
    featured: bool = False
    badge_url: Optional[str] = None
    category_id: Optional[str] = None
    is_template: bool = False

    @model_validator(mode="after")
    def exclusive_needs_code(self):
        if self.is_exclusive and not (self.exclusive_code or "").strip():
            raise ValueError("Exclusive quests need an unlock code")
        if self.acceptance_deadline is not None and self.acceptance_deadline.tzinfo is None:
            self.acceptance_deadline = self.acceptance_deadline.replace(tzinfo=datetime.timezone.utc)
        return self


class QuestPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    points: Optional[int] = Field(default=None, ge=0, le=10000)
    difficulty: Optional[QuestDifficulty] = None
    completion_days: Optional[int] = Field(default=None, ge=1, le=365)
    acceptance_deadline: Optional[datetime.datetime] = None
    is_exclusive: Optional[bool] = None
    exclusive_code: Optional[str] = Field(default=None, max_length=50)
    requires_final_approval: Optional[bool] = None
    featured: Optional[bool] = None
    badge_url: Optional[str] = None
    category_id: Optional[str] = None


# fields a GM may still edit once adventurers hold the quest
METADATA_FIELDS = {"title", "description", "badge_url"}


class Objective(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    points: int = Field(default=0, ge=0, le=10000)
    display_order: Optional[int] = Field(default=None, ge=0)
    depends_on_id: Optional[str] = None
    evidence_required: bool = True
    evidence_type: EvidenceType = EvidenceType.TEXT_OR_LINK

    @model_validator(mode="after")
    def evidence_consistency(self):
        if not self.evidence_required:
            self.evidence_type = EvidenceType.NONE
        elif self.evidence_type == EvidenceType.NONE:
            raise ValueError("Objectives that require evidence need an evidence type")
        return self


class ObjectivePatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    points: Optional[int] = Field(default=None, ge=0, le=10000)
    display_order: Optional[int] = Field(default=None, ge=0)
    depends_on_id: Optional[str] = None
    evidence_required: Optional[bool] = None
    evidence_type: Optional[EvidenceType] = None


class ObjectiveResp(BaseModel):
    id: str
    quest_id: str
    title: str
    description: Optional[str] = None
    points: int = 0
    display_order: int = 0
    depends_on_id: Optional[str] = None
    evidence_required: bool = True
    evidence_type: EvidenceType = EvidenceType.TEXT_OR_LINK


class QuestResp(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    points: int = 0
    status: QuestStatus
    difficulty: QuestDifficulty = QuestDifficulty.APPRENTICE
    completion_days: Optional[int] = None
    acceptance_deadline: Optional[datetime.datetime] = None
    is_exclusive: bool = False
    requires_final_approval: Optional[bool] = None
    featured: bool = False
    badge_url: Optional[str] = None
    category_id: Optional[str] = None
    is_template: bool = False
    template_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    objectives: List[ObjectiveResp] = Field(default_factory=list)


class GMQuestResp(QuestResp):
    exclusive_code: Optional[str] = None
    active_attempts: int = 0


class CategoryResp(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    display_order: int = 0


CATEGORIES = [
    {"id": "cat-combat", "name": "Combat", "description": "Battle quests involving fighting enemies",
     "icon": "sword", "color": "#dc2626", "display_order": 0},
    {"id": "cat-exploration", "name": "Exploration", "description": "Quests involving discovering new places",
     "icon": "compass", "color": "#2563eb", "display_order": 1},
    {"id": "cat-gathering", "name": "Gathering", "description": "Quests involving collecting items or resources",
     "icon": "backpack", "color": "#16a34a", "display_order": 2},
    {"id": "cat-social", "name": "Social", "description": "Quests involving interaction with others",
     "icon": "users", "color": "#9333ea", "display_order": 3},
    {"id": "cat-mystery", "name": "Mystery", "description": "Quests involving solving puzzles and mysteries",
     "icon": "scroll", "color": "#ca8a04", "display_order": 4},
]
