import datetime
from enum import Enum
from typing import Optional, Set

from pydantic import BaseModel, Field

GM_ROLES = ("gm", "admin")


class Principal(BaseModel):
    """The authenticated caller, with the roles loaded from ``user_roles``."""
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    roles: Set[str] = Field(default_factory=set)
    is_disabled: bool = False

    @property
    def is_gm(self) -> bool:
        return bool(self.roles & set(GM_ROLES))

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def display(self) -> str:
        return self.display_name or self.email or self.id


class TokenResp(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResp(BaseModel):
    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    total_points: int = 0
    quests_completed: int = 0
    show_on_leaderboard: bool = True
    roles: Set[str] = Field(default_factory=set)


class UserPatch(BaseModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    show_on_leaderboard: Optional[bool] = None
    fcm_token: Optional[str] = None


class RoleParam(BaseModel):
    role: str


class UserRankingResp(BaseModel):
    id: str
    display_name: Optional[str] = None
    total_points: int = 0
    quests_completed: int = 0
    rank: Optional[int] = None


class UserRoleFilter(str, Enum):
    ALL = "all"
    GM = "gm"
    ADMIN = "admin"
    MEMBER = "member"


class GMUserResp(UserResp):
    role: str = "member"
    is_disabled: bool = False
    disabled_at: Optional[datetime.datetime] = None
    disabled_by: Optional[str] = None


class DisableParam(BaseModel):
    disabled: bool
