# settings.py
import logging
import os
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .errors import GuildHallError
from .metrics import setup_metrics
from .store import FirestoreStore, MemoryStore

# Build paths inside the project like this: os.path.join(BASE_DIR, ...)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

ENV_MODE = os.getenv("ENV_MODE", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

if ENV_MODE == "prod":
    GUILDHALL_STORE = os.getenv("GUILDHALL_STORE", "firestore")
    BUCKET_NAME = os.getenv("BUCKET_NAME", "guildhall-prod.appspot.com")
    FIREBASE_CRED = os.getenv("FIREBASE_CRED", os.path.join(BASE_DIR, "credentials", "prod.json"))
else:
    GUILDHALL_STORE = os.getenv("GUILDHALL_STORE", "memory")
    BUCKET_NAME = os.getenv("BUCKET_NAME", "guildhall-dev.appspot.com")
    FIREBASE_CRED = os.getenv("FIREBASE_CRED", os.path.join(BASE_DIR, "credentials", "dev.json"))

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "guildhall-dev-secret")  # should be kept secret
JWT_REFRESH_SECRET_KEY = os.getenv("JWT_REFRESH_SECRET_KEY", "guildhall-dev-refresh")  # should be kept secret

# quests without an explicit flag fall back to this
REQUIRE_FINAL_APPROVAL = os.getenv("REQUIRE_FINAL_APPROVAL", "false").lower() in ("1", "true", "yes")
EXPIRY_SWEEP_SECONDS = int(os.getenv("EXPIRY_SWEEP_SECONDS", "3600"))
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")


def _init_store():
    if GUILDHALL_STORE == "firestore":
        import firebase_admin
        from firebase_admin import credentials, firestore

        os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", FIREBASE_CRED)
        if not firebase_admin._apps:
            firebase_admin.initialize_app(credentials.Certificate(FIREBASE_CRED))
        logging.info("Using Firestore store")
        return FirestoreStore(firestore.client())

    logging.info("Using in-memory store")
    return MemoryStore()


store = _init_store()

app = FastAPI(title="Guild Hall")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["POST", "PUT", "GET", "OPTIONS", "DELETE", "PATCH"],
    allow_headers=["*"],
)

CLOUDRUN_SERVICE_URL = os.getenv("CLOUDRUN_SERVICE_URL")

if CLOUDRUN_SERVICE_URL:
    ALLOWED_HOSTS = [urlparse(CLOUDRUN_SERVICE_URL).netloc]
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=ALLOWED_HOSTS)

setup_metrics(app)


@app.exception_handler(GuildHallError)
async def guildhall_exception_handler(request: Request, exc: GuildHallError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


def _describe(errors) -> str:
    messages = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(messages) or "Invalid input"


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc):
    message = _describe(exc.errors())
    logging.warning(f"Validation error on {request.url.path}: {message}")
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": message, "code": "ValidationError"},
    )
