"""
Login Demo - Auth Backend
=========================
Handles signup, password login, profile and logout.  Login is gated behind
the slider CAPTCHA: the password step returns a *pending* token, and only a
captcha proof redeemed against the CAPTCHA service (port 8000) turns it into
a full session.

API:
  POST /api/signup        -> { token, user }
  POST /api/login         -> { pendingToken, captchaRequired: true }
  POST /api/auth/upgrade  -> { success, token, user }
  GET  /api/profile       -> { user }
  POST /api/logout        -> { message }
  GET  /api/health        -> { status: "ok", captcha_service }
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from demo_app.backend.security import (
    create_token,
    decode_token,
    hash_password,
    mask_email,
    mask_sensitive_data,
    mask_token,
    verify_password,
)
from demo_app.backend.storage import UserStore

# --- Logging Setup ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger("demo_app")

# ──────────────────────────────────────────────
# App & CORS
# ──────────────────────────────────────────────
app = FastAPI(
    title="Login Demo",
    description="Signup / login backend with a slider CAPTCHA gate.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────
CAPTCHA_SERVICE_URL = os.environ.get("CAPTCHA_SERVICE_URL", "http://localhost:8000")
CAPTCHA_TIMEOUT = 3.0
USERS_FILE = Path(
    os.environ.get("AUTH_USERS_FILE", str(Path(__file__).parent / "data" / "users.json"))
)
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 6

user_store = UserStore(USERS_FILE)

# Tests point this at the CAPTCHA app in-process.
captcha_transport: Optional[httpx.AsyncBaseTransport] = None


def _captcha_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=CAPTCHA_SERVICE_URL, timeout=CAPTCHA_TIMEOUT, transport=captcha_transport
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    client_ip = request.headers.get("x-forwarded-for") or (
        request.client.host if request.client else "-"
    )
    user_agent = request.headers.get("user-agent", "Unknown")[:50]
    logger.info("🌐 %s %s from %s (%s)", request.method, request.url.path, client_ip, user_agent)
    return await call_next(request)


# --- Request Models ---
class SignupRequest(BaseModel):
    fullName: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class UpgradeRequest(BaseModel):
    captchaToken: str


def _public_user(user: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in user.items() if k != "password"}


def _bearer(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    return authorization.replace("Bearer ", "", 1).strip()


# ──────────────────────────────────────────────
# API Endpoints
# ──────────────────────────────────────────────
@app.get("/api/health")
async def health():
    """Health check; also reports whether the CAPTCHA service answers."""
    captcha_ok = False
    try:
        async with _captcha_client() as client:
            resp = await client.get("/api/health")
            captcha_ok = resp.status_code == 200
    except httpx.HTTPError as exc:
        logger.warning("CAPTCHA service unreachable: %s", exc)

    return {
        "status": "ok",
        "users": user_store.count(),
        "captcha_service": "connected" if captcha_ok else "unreachable",
    }


@app.post("/api/signup", status_code=201)
async def signup(req: SignupRequest):
    logger.info("📝 Signup attempt: %s", mask_sensitive_data(req.model_dump()))

    full_name = req.fullName.strip()
    email = req.email.strip().lower()
    if not full_name or not email or not req.password:
        raise HTTPException(status_code=400, detail="Missing required fields")
    if not EMAIL_RE.match(email):
        raise HTTPException(status_code=400, detail="Invalid email")
    if len(req.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password too short")

    user = {
        "id": uuid.uuid4().hex,
        "fullName": full_name,
        "email": email,
        "password": hash_password(req.password),
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "lastLogin": None,
        "profile": {"avatar": None, "bio": "", "preferences": {}},
    }
    try:
        user_store.add(user)
    except ValueError:
        logger.warning("❌ Signup failed - email exists: %s", mask_email(email))
        raise HTTPException(status_code=409, detail="Email already exists")

    token = create_token(user)
    logger.info("✅ Signup success: %s token=%s", mask_email(email), mask_token(token))
    return {"message": "Signup successful", "token": token, "user": _public_user(user)}


@app.post("/api/login")
async def login(req: LoginRequest):
    """Password step. The pending token must be upgraded with a captcha."""
    logger.info("🔐 Login attempt: %s", mask_email(req.email))

    if not req.email.strip() or not req.password:
        raise HTTPException(status_code=400, detail="Missing email or password")

    user = user_store.find_by_email(req.email)
    if not user or not verify_password(user["password"], req.password):
        logger.warning("❌ Login failed for %s", mask_email(req.email))
        raise HTTPException(status_code=401, detail="Invalid email or password")

    pending = create_token(user, kind="pending")
    return {
        "message": "Password verified. Complete the captcha.",
        "pendingToken": pending,
        "captchaRequired": True,
    }


@app.post("/api/auth/upgrade")
async def upgrade(req: UpgradeRequest, authorization: Optional[str] = Header(default=None)):
    """Redeem a captcha proof and exchange the pending token for a session."""
    claims = decode_token(_bearer(authorization), kind="pending")
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    try:
        async with _captcha_client() as client:
            resp = await client.post(
                "/api/captcha/redeem", json={"captchaToken": req.captchaToken}
            )
            resp.raise_for_status()
            redeemed = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("💥 Captcha redeem failed: %s", exc)
        raise HTTPException(status_code=502, detail="Captcha service unavailable")

    if not redeemed.get("valid"):
        logger.warning("❌ Upgrade refused: %s", redeemed.get("reason"))
        return {"success": False, "error": redeemed.get("reason") or "Captcha not verified"}

    user = user_store.find_by_email(claims["email"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    user["lastLogin"] = datetime.now(timezone.utc).isoformat()
    user_store.update(user)

    token = create_token(user)
    logger.info("✅ Login success: %s token=%s", mask_email(user["email"]), mask_token(token))
    return {"success": True, "token": token, "user": _public_user(user)}


@app.get("/api/profile")
async def profile(authorization: Optional[str] = Header(default=None)):
    claims = decode_token(_bearer(authorization))
    if claims is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = user_store.find_by_email(claims["email"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"user": _public_user(user)}


@app.post("/api/logout")
async def logout(authorization: Optional[str] = Header(default=None)):
    claims = decode_token(_bearer(authorization)) if authorization else None
    if claims:
        logger.info("🚪 Logout: %s", mask_email(claims["email"]))
    else:
        logger.info("🚪 Logout without a valid token")
    return {"message": "Logged out"}


# ──────────────────────────────────────────────
# Run with: uvicorn demo_app.backend.main:app --port 3001
# ──────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("demo_app.backend.main:app", host="0.0.0.0", port=3001, reload=True)
