"""
Credentials and log masking.

Passwords are hashed with argon2; sessions are HS256 JWTs.  A login first
yields a short-lived *pending* token that is only good for the captcha
upgrade; the upgrade yields the *access* token.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from jose import JWTError, jwt

SECRET_KEY = os.environ.get("AUTH_JWT_SECRET", "demo-app-secret-key-change-in-production")
ALGORITHM = "HS256"
PENDING_TOKEN_MINUTES = 10
ACCESS_TOKEN_DAYS = 7

_PH = PasswordHasher()


# --- Passwords ---
def hash_password(plain: str) -> str:
    if not plain:
        raise ValueError("Empty password")
    return _PH.hash(plain)


def verify_password(hash_value: str, plain: str) -> bool:
    if not hash_value or not plain:
        return False
    try:
        return _PH.verify(hash_value, plain)
    except (VerificationError, InvalidHashError):
        return False


# --- JWT ---
def create_token(user: dict[str, Any], kind: str = "access") -> str:
    lifetime = (
        timedelta(minutes=PENDING_TOKEN_MINUTES)
        if kind == "pending"
        else timedelta(days=ACCESS_TOKEN_DAYS)
    )
    payload = {
        "sub": user["id"],
        "email": user["email"],
        "kind": kind,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str, kind: str = "access") -> Optional[dict[str, Any]]:
    """Claims of a valid token of the given kind, else ``None``."""
    try:
        claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if claims.get("kind") != kind:
        return None
    return claims


# --- Masking for logs ---
def mask_token(token: Any) -> Any:
    if not token or not isinstance(token, str):
        return token
    if len(token) <= 10:
        return token[0] + "***" + token[-1]
    if len(token) <= 20:
        return token[:3] + "***" + token[-3:]
    return token[:8] + "*" * min(15, len(token) - 16) + token[-8:]


def mask_email(email: Any) -> Any:
    if not email or not isinstance(email, str) or "@" not in email:
        return email
    name, domain = email.split("@", 1)
    if len(name) > 2:
        name = name[0] + "*" * (len(name) - 2) + name[-1]
    return f"{name}@{domain}"


def mask_sensitive_data(data: Any) -> Any:
    """Shallow copy of *data* with passwords and tokens masked."""
    if not isinstance(data, dict):
        return data
    masked = dict(data)
    for key, value in masked.items():
        if not value:
            continue
        if key == "password":
            masked[key] = "***"
        elif "token" in key.lower():
            masked[key] = mask_token(value)
    return masked
