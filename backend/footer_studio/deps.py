"""FastAPI dependencies (user header parsing, worker auth, shared services)."""
from __future__ import annotations

import re
from functools import lru_cache
from fastapi import Header, HTTPException
from typing import Annotated, Optional
from google.oauth2 import id_token
from google.auth.transport.requests import Request
from .config import get_settings
from .services.firestore import FirestoreChangeFeed, FirestoreJobStore
from .services.tasks import PipelineTrigger

_USER_RE = re.compile(r"^[0-9a-fA-F-]{36}$")


def get_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> Optional[str]:
    """Return the authenticated user id from the `X-User-Id` header.

    The header is set by the auth proxy in front of the API. A missing header
    yields None so the job tracker can reject the request itself; a malformed
    one is a 400.
    """
    if x_user_id is None:
        return None
    if not _USER_RE.match(x_user_id):
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
    return x_user_id


@lru_cache(maxsize=1)
def get_job_store() -> FirestoreJobStore:
    return FirestoreJobStore()


@lru_cache(maxsize=1)
def get_change_feed() -> FirestoreChangeFeed:
    return FirestoreChangeFeed()


@lru_cache(maxsize=1)
def get_pipeline_trigger() -> PipelineTrigger:
    return PipelineTrigger()


async def verify_oidc_token(
    authorization: Annotated[str | None, Header(alias="Authorization")] = None,
) -> dict:
    """Verify Google-issued OIDC token for Cloud Tasks worker invocations.

    Behavior:
    - When TASKS_EMULATE is true (local/dev), bypass verification.
    - Otherwise, require an Authorization: Bearer <token> header.
    - Verify signature, expiry, and audience against TASKS_TARGET_URL.
    - Enforce the caller's email equals TASKS_SERVICE_ACCOUNT_EMAIL.
    """
    settings = get_settings()

    # Bypass in emulation mode to simplify local development
    if settings.TASKS_EMULATE:
        return {"email": "emulated-task@example.com"}

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    try:
        token_type, token = authorization.split(" ", 1)
        if token_type.lower() != "bearer" or not token:
            raise ValueError("Invalid token type")
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    try:
        decoded = id_token.verify_oauth2_token(
            token,
            Request(),
            settings.TASKS_TARGET_URL,
        )

        caller = decoded.get("email")
        if not caller or caller != settings.TASKS_SERVICE_ACCOUNT_EMAIL:
            raise HTTPException(status_code=403, detail="Token is from an unauthorized service account")

        return decoded
    except HTTPException:
        raise
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=401, detail=f"Invalid OIDC token: {exc}")
