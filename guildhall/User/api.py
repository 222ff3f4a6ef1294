import logging
from typing import List

from fastapi import Depends, Form
from firebase_admin import auth
from jose import jwt

from ..errors import (NotAuthenticatedError, NotAuthorizedError,
                      NotFoundError, ValidationError)
from ..settings import JWT_REFRESH_SECRET_KEY, app, store
from .deps import get_current_user, require_admin, require_gm
from .models import (DisableParam, GMUserResp, Principal, RoleParam,
                     TokenResp, UserPatch, UserResp, UserRoleFilter)
from .utils import (ALGORITHM, create_access_token, create_refresh_token,
                    ensure_user, get_gm_user, get_user, is_valid_role,
                    list_users_with_roles, set_user_disabled)


def _check_enabled(user: dict):
    if user.get("is_disabled"):
        raise NotAuthorizedError("This account has been disabled")


# SIGN IN
@app.post("/api/v1/signin/", response_model=TokenResp)
async def signin(id_token: str = Form(...), display_name: str = Form(None)):
    """Exchange a Firebase ID token for Guild Hall access and refresh tokens."""
    try:
        decoded = auth.verify_id_token(id_token)
    except Exception as e:
        logging.warning(f"Rejected sign-in: {e}")
        raise NotAuthenticatedError("Invalid identity token")

    uid = decoded["uid"]
    email = decoded.get("email")
    _check_enabled(ensure_user(uid, email=email, display_name=display_name or decoded.get("name")))
    return {
        "access_token": create_access_token(uid, email=email),
        "refresh_token": create_refresh_token(uid),
    }


@app.post("/api/v1/refresh/", response_model=TokenResp)
async def refresh(refresh_token: str = Form(...)):
    try:
        payload = jwt.decode(refresh_token, JWT_REFRESH_SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.JWTError:
        raise NotAuthenticatedError("Invalid refresh token")

    user = store.get_user(payload["sub"])
    if user is None:
        raise NotAuthenticatedError("User not found")
    _check_enabled(user)
    return {
        "access_token": create_access_token(user["id"], email=user.get("email")),
        "refresh_token": create_refresh_token(user["id"]),
    }


@app.get("/api/v1/user/me", response_model=UserResp)
async def get_profile(principal: Principal = Depends(get_current_user)):
    user = get_user(principal.id)
    if user is None:
        ensure_user(principal.id, email=principal.email)
        user = get_user(principal.id)
    return user


@app.patch("/api/v1/user/me", response_model=UserResp)
async def update_profile(patch: UserPatch, principal: Principal = Depends(get_current_user)):
    ensure_user(principal.id, email=principal.email)
    changes = patch.model_dump(exclude_unset=True)
    if changes:
        store.upsert_user(principal.id, changes)
    return get_user(principal.id)


@app.post("/api/v1/user/me/FcmToken/")
async def add_fcm_token(fcm_token: str = Form(...), principal: Principal = Depends(get_current_user)):
    ensure_user(principal.id, email=principal.email)
    store.upsert_user(principal.id, {"fcm_token": fcm_token})
    return {"detail": "Token added successfully"}


@app.delete("/api/v1/user/me/FcmToken/")
async def delete_fcm_token(principal: Principal = Depends(get_current_user)):
    ensure_user(principal.id, email=principal.email)
    store.upsert_user(principal.id, {"fcm_token": None})
    return {"detail": "Token deleted successfully"}


# GM user management
@app.get("/api/v1/gm/users/", response_model=List[GMUserResp])
async def gm_get_users(
    search: str = None,
    role: UserRoleFilter = UserRoleFilter.ALL,
    principal: Principal = Depends(require_gm),
):
    return list_users_with_roles(search, role)


@app.get("/api/v1/gm/users/{user_id}", response_model=GMUserResp)
async def gm_get_user(user_id: str, principal: Principal = Depends(require_gm)):
    return get_gm_user(user_id)


@app.post("/api/v1/gm/users/{user_id}/disable", response_model=GMUserResp)
async def gm_disable_user(user_id: str, param: DisableParam, principal: Principal = Depends(require_gm)):
    return set_user_disabled(principal, user_id, param.disabled)


@app.post("/api/v1/gm/users/{user_id}/roles", response_model=UserResp)
async def grant_role(user_id: str, param: RoleParam, principal: Principal = Depends(require_admin)):
    if not is_valid_role(param.role):
        raise ValidationError(f"Unknown role {param.role!r}")
    if store.get_user(user_id) is None:
        raise NotFoundError("User not found")
    store.add_role(user_id, param.role)
    logging.info(f"{principal.id} granted {param.role} to {user_id}")
    return get_user(user_id)
