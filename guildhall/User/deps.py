import jose
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import jwt

from ..errors import NotAuthenticatedError, NotAuthorizedError
from ..settings import JWT_SECRET_KEY
from .models import Principal
from .utils import ALGORITHM, load_principal

# missing credentials are reported through NotAuthenticatedError, not FastAPI's own 401
reuseable_oauth = OAuth2PasswordBearer(tokenUrl="api/v1/signin/", scheme_name="JWT", auto_error=False)


def get_current_user(token: str = Depends(reuseable_oauth)) -> Principal:
    if not token:
        raise NotAuthenticatedError()

    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[ALGORITHM])
    except jose.exceptions.ExpiredSignatureError:
        raise NotAuthenticatedError("Token expired")
    except jwt.JWTError:
        raise NotAuthenticatedError("Could not validate credentials")

    principal = load_principal(payload["sub"], payload.get("email"))
    if principal.is_disabled:
        raise NotAuthorizedError("This account has been disabled")
    return principal


def require_gm(principal: Principal = Depends(get_current_user)) -> Principal:
    if not principal.is_gm:
        raise NotAuthorizedError("This area is reserved for Game Masters")
    return principal


def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    if not principal.is_admin:
        raise NotAuthorizedError("Only administrators can manage roles")
    return principal
