"""
Authentication helpers: password hashing, signed tokens and the FastAPI
dependency that resolves the calling user.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from jose import jwt
from jose.exceptions import JWTError
from pydantic import BaseModel

from backend.config import get_settings
from backend.db import DbClient
from backend.dependencies import get_db_client, get_firebase_app
from backend.errors import AuthError
from shared.types import UserProfile

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 100_000
ACCESS_PURPOSE = "access"
VERIFY_EMAIL_PURPOSE = "verify_email"

security = HTTPBearer(auto_error=False)


class TokenPayload(BaseModel):
    sub: Optional[str] = None
    exp: Optional[int] = None
    email: Optional[str] = None
    purpose: Optional[str] = None


class FederatedIdentity(BaseModel):
    uid: str
    email: str
    name: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = False


def hash_password(password: str, salt: Optional[str] = None) -> Dict[str, str]:
    salt_bytes = os.urandom(16) if salt is None else base64.b64decode(salt)
    hashed = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt_bytes, PBKDF2_ITERATIONS
    )
    return {
        "salt": base64.b64encode(salt_bytes).decode(),
        "hash": base64.b64encode(hashed).decode(),
    }


def verify_password(password: str, salt: str, stored_hash: str) -> bool:
    calc = hash_password(password, salt)
    return hmac.compare_digest(calc["hash"], stored_hash)


def split_full_name(full_name: str) -> tuple[str, str]:
    first, _, rest = full_name.strip().partition(" ")
    return first, rest.strip()


def email_allowed(email: str, domain: str) -> bool:
    return email.strip().lower().endswith("@" + domain.lower().lstrip("@"))


def _encode(claims: Dict[str, Any], expires_minutes: int) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {**claims, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.auth_secret, algorithm=settings.auth_algorithm)


def _decode(token: str, purpose: str) -> TokenPayload:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, settings.auth_secret, algorithms=[settings.auth_algorithm]
        )
    except JWTError as e:
        raise AuthError("Invalid token") from e
    token_data = TokenPayload(**payload)
    if token_data.purpose != purpose or not token_data.sub:
        raise AuthError("Invalid token payload")
    return token_data


def create_access_token(user_id: str, email: str) -> str:
    settings = get_settings()
    return _encode(
        {"sub": user_id, "email": email, "purpose": ACCESS_PURPOSE},
        settings.access_token_expire_minutes,
    )


def decode_access_token(token: str) -> TokenPayload:
    return _decode(token, ACCESS_PURPOSE)


def create_verification_token(user_id: str) -> str:
    settings = get_settings()
    return _encode(
        {"sub": user_id, "purpose": VERIFY_EMAIL_PURPOSE},
        settings.verification_token_expire_minutes,
    )


def decode_verification_token(token: str) -> TokenPayload:
    return _decode(token, VERIFY_EMAIL_PURPOSE)


def send_verification_link(profile: UserProfile) -> str:
    """
    Issue a verification token for ``profile`` and hand the link to the
    delivery channel. Mail transport is out of scope; the link is logged.
    """
    settings = get_settings()
    token = create_verification_token(profile.id)
    link = f"{settings.public_base_url.rstrip('/')}/verify-email?token={token}"
    logger.info("Verification link for %s: %s", profile.email, link)
    return token


def verify_federated_token(id_token: str) -> FederatedIdentity:
    """Validate a Firebase ID token and return the identity it carries."""
    try:
        decoded = firebase_auth.verify_id_token(id_token, app=get_firebase_app())
    except (ValueError, firebase_auth.InvalidIdTokenError) as e:
        raise AuthError("Invalid federated token") from e
    email = decoded.get("email")
    if not email:
        raise AuthError("Federated token has no email")
    return FederatedIdentity(
        uid=decoded["uid"],
        email=email,
        name=decoded.get("name"),
        picture=decoded.get("picture"),
        email_verified=bool(decoded.get("email_verified", False)),
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: DbClient = Depends(get_db_client),
) -> UserProfile:
    """Dependency to get the verified user behind the bearer token."""
    if credentials is None:
        raise _unauthorized("Missing token")
    try:
        payload = decode_access_token(credentials.credentials)
    except AuthError as e:
        raise _unauthorized(str(e))
    user = db.get_user(payload.sub)
    if not user:
        raise _unauthorized("Could not validate credentials")
    if not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Email not verified"
        )
    return user
