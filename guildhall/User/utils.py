import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from jose import jwt

from ..errors import NotAuthorizedError, NotFoundError, ValidationError
from ..settings import JWT_REFRESH_SECRET_KEY, JWT_SECRET_KEY, store
from .models import GM_ROLES, GMUserResp, Principal, UserResp, UserRoleFilter

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 1 day
REFRESH_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days
ALGORITHM = "HS256"


def create_access_token(subject: Union[str, Any], email: str = None, expires_delta: timedelta = None) -> str:
    if expires_delta is not None:
        expires_delta = datetime.now(timezone.utc) + expires_delta
    else:
        expires_delta = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expires_delta, "sub": str(subject)}
    if email:
        to_encode["email"] = email
    encoded_jwt = jwt.encode(to_encode, JWT_SECRET_KEY, ALGORITHM)
    return encoded_jwt


def create_refresh_token(subject: Union[str, Any], expires_delta: timedelta = None) -> str:
    if expires_delta is not None:
        expires_delta = datetime.now(timezone.utc) + expires_delta
    else:
        expires_delta = datetime.now(timezone.utc) + timedelta(minutes=REFRESH_TOKEN_EXPIRE_MINUTES)

    to_encode = {"exp": expires_delta, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, JWT_REFRESH_SECRET_KEY, ALGORITHM)
    return encoded_jwt


def load_principal(user_id: str, email: str = None) -> Principal:
    user = store.get_user(user_id) or {}
    return Principal(
        id=user_id,
        email=email or user.get("email"),
        display_name=user.get("display_name"),
        roles=store.get_roles(user_id),
        is_disabled=bool(user.get("is_disabled")),
    )


def get_user(user_id: str) -> UserResp:
    user = store.get_user(user_id)
    if user is None:
        return None
    user["roles"] = store.get_roles(user_id)
    return UserResp(**user)


def ensure_user(user_id: str, email: str = None, display_name: str = None) -> dict:
    user = store.get_user(user_id)
    if user is not None:
        return user
    return store.upsert_user(
        user_id,
        {
            "email": email,
            "display_name": display_name,
            "total_points": 0,
            "quests_completed": 0,
            "show_on_leaderboard": True,
        },
    )


def is_valid_role(role: str) -> bool:
    return role in GM_ROLES


def primary_role(roles) -> str:
    if "admin" in roles:
        return "admin"
    if "gm" in roles:
        return "gm"
    return "member"


def _gm_user(user: dict) -> GMUserResp:
    user = dict(user)
    user["roles"] = store.get_roles(user["id"])
    user["role"] = primary_role(user["roles"])
    return GMUserResp(**user)


def get_gm_user(user_id: str) -> GMUserResp:
    user = store.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return _gm_user(user)


def list_users_with_roles(search: str = None, role: UserRoleFilter = UserRoleFilter.ALL) -> list:
    """Every user with their highest role, best scorers first."""
    users = [_gm_user(user) for user in store.list_users()]
    if search:
        needle = search.strip().lower()
        users = [
            user for user in users
            if needle in (user.display_name or "").lower() or needle in (user.email or "").lower()
        ]
    if role and role != UserRoleFilter.ALL:
        users = [user for user in users if user.role == role.value]
    users.sort(key=lambda user: user.total_points, reverse=True)
    return users


def set_user_disabled(principal: Principal, user_id: str, disabled: bool) -> GMUserResp:
    if user_id == principal.id:
        raise ValidationError("You cannot disable your own account")
    if store.get_user(user_id) is None:
        raise NotFoundError("User not found")
    if "admin" in store.get_roles(user_id) and not principal.is_admin:
        raise NotAuthorizedError("Only administrators can disable administrators")

    store.upsert_user(
        user_id,
        {
            "is_disabled": disabled,
            "disabled_at": datetime.now(timezone.utc) if disabled else None,
            "disabled_by": principal.id if disabled else None,
        },
    )
    logging.info(f"{principal.id} {'disabled' if disabled else 'enabled'} {user_id}")
    return get_gm_user(user_id)
