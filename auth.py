"""Bearer token gate backed by Firebase Authentication.

Every protected route depends on :func:`get_principal`, which re-verifies the
ID token against Firebase on each call. There is no local session or token
cache.
"""
import base64
import json
import logging
from dataclasses import dataclass
from typing import Optional

import firebase_admin
from fastapi import Depends, Header, HTTPException
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

import config
from database import USERS, get_db

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    email: str


def _firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    if not config.FB_SERVICE_KEY:
        raise RuntimeError("FB_SERVICE_KEY not set")
    service_account = json.loads(base64.b64decode(config.FB_SERVICE_KEY).decode("utf-8"))
    return firebase_admin.initialize_app(credentials.Certificate(service_account))


def verify_token(id_token: str) -> Optional[str]:
    """Verify a Firebase ID token and return its email, or None."""
    try:
        decoded = firebase_auth.verify_id_token(id_token, app=_firebase_app())
    except Exception as ex:
        log.debug("verify_token() failed: %s", ex)
        return None
    email = decoded.get("email")
    if not email:
        log.debug("verify_token() failed: token carries no email")
    return email


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    """Gets the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        log.debug("Authorization header rejected, not 'Bearer <token>'")
        return None
    return parts[1]


def get_principal(token: Optional[str] = Depends(bearer_token)) -> Principal:
    if not token:
        raise HTTPException(status_code=401, detail="unauthorized access")
    email = verify_token(token)
    if not email:
        raise HTTPException(status_code=401, detail="unauthorized access")
    return Principal(email=email)


def require_role(*roles: str):
    """Dependency that loads the principal's user record and checks its role.

    Blocked users and users without a record are refused as well.
    """

    def check(principal: Principal = Depends(get_principal)) -> dict:
        user = get_db()[USERS].find_one({"email": principal.email})
        if not user or user.get("status") == "blocked":
            raise HTTPException(status_code=403, detail="forbidden access")
        if user.get("role", "donor") not in roles:
            log.debug("%s lacks role %s", principal.email, roles)
            raise HTTPException(status_code=403, detail="forbidden access")
        return user

    return check


require_admin = require_role("admin")
require_staff = require_role("admin", "volunteer")


def forbid_self_action(target_email: str, principal: Principal) -> None:
    if target_email.lower() == principal.email.lower():
        raise HTTPException(status_code=403, detail="You cannot change your own role or status")
