"""
Challenge engine
================
Generation picks a random background, a random puzzle shape and a random
target position for the hole, then stores a session for it.

Verification checks one claimed drag end-point against the stored target:

  1. Unknown or expired session        → "Session expired"
  2. More than ``MAX_ATTEMPTS`` calls   → "Too many attempts" (session dropped)
  3. Duration outside [500, 10000] ms  → "Invalid duration"
  4. accuracy = 100 - |x - target_x| / canvas_width * 100
  5. Accept only 85 <= accuracy < 99.5; a near-perfect landing is treated
     as scripted.  Success consumes the session.
"""

from __future__ import annotations

import enum
import math
import random
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from captcha_service import config
from captcha_service.assets import AssetCatalog
from captcha_service.errors import NoAssetsAvailable
from captcha_service.logs import get_trace_logger
from captcha_service.proof import ProofLedger
from captcha_service.sessions import ChallengeSession, SessionStore


@dataclass(frozen=True)
class Geometry:
    canvas_width: int = config.CANVAS_WIDTH
    canvas_height: int = config.CANVAS_HEIGHT
    puzzle_width: int = config.PUZZLE_WIDTH
    puzzle_height: int = config.PUZZLE_HEIGHT
    horizontal_margin: int = config.HORIZONTAL_MARGIN
    vertical_margin: int = config.VERTICAL_MARGIN

    @property
    def x_range(self) -> tuple[int, int]:
        return (
            self.horizontal_margin,
            self.canvas_width - self.puzzle_width - self.horizontal_margin,
        )

    @property
    def y_range(self) -> tuple[int, int]:
        return (
            self.vertical_margin,
            self.canvas_height - self.puzzle_height - self.vertical_margin,
        )


def new_session_id() -> str:
    """16 bytes from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(16)


# ──────────────────────────────────────────────
# Generation
# ──────────────────────────────────────────────
class ChallengeGenerator:
    def __init__(
        self,
        catalog: AssetCatalog,
        store: SessionStore,
        geometry: Geometry = Geometry(),
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = new_session_id,
        ttl: float = config.SESSION_TTL_SECONDS,
        expose_target: bool = config.EXPOSE_TARGET,
        url_prefix: str = "/api/captcha",
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.geometry = geometry
        self.rng = rng or random.Random()
        self.clock = clock
        self.id_factory = id_factory
        self.ttl = ttl
        self.expose_target = expose_target
        self.url_prefix = url_prefix

    def generate(self) -> dict[str, Any]:
        """Create a session and return the client payload.

        Raises ``NoAssetsAvailable`` if either asset set is empty.
        """
        backgrounds = self.catalog.list_backgrounds()
        if not backgrounds:
            raise NoAssetsAvailable("No background images found")
        shapes = self.catalog.list_puzzle_shapes()
        if not shapes:
            raise NoAssetsAvailable("No puzzle shapes found")

        background = self.rng.choice(backgrounds)
        puzzle = self.rng.choice(shapes)
        target_x = self.rng.randint(*self.geometry.x_range)
        target_y = self.rng.randint(*self.geometry.y_range)

        session = ChallengeSession(
            id=self.id_factory(),
            background=background,
            puzzle=puzzle,
            target_x=target_x,
            target_y=target_y,
            created_at=self.clock(),
        )
        with self.store.atomic():
            self.store.create(session)
            swept = self.store.sweep_expired(self.clock(), self.ttl)

        log = get_trace_logger(session.id)
        log.info("🎲 Captcha generated: bg=%s puzzle=%s", background, puzzle)
        if swept:
            log.info("🧹 Cleaned %d expired captcha sessions", swept)

        return self._payload(session)

    def _payload(self, session: ChallengeSession) -> dict[str, Any]:
        g = self.geometry
        payload: dict[str, Any] = {
            "sessionId": session.id,
            "backgroundImage": f"{self.url_prefix}/image/{session.id}/background",
            "puzzleImage": f"{self.url_prefix}/image/{session.id}/puzzle",
            "canvasWidth": g.canvas_width,
            "canvasHeight": g.canvas_height,
            "puzzleWidth": g.puzzle_width,
            "puzzleHeight": g.puzzle_height,
        }
        if self.expose_target:
            # TODO: render the hole into the background and stop sending these.
            payload["puzzleX"] = session.target_x
            payload["puzzleY"] = session.target_y
        return payload


# ──────────────────────────────────────────────
# Verification
# ──────────────────────────────────────────────
class FailureReason(str, enum.Enum):
    SESSION_EXPIRED = "Session expired"
    TOO_MANY_ATTEMPTS = "Too many attempts"
    INVALID_DURATION = "Invalid duration"
    POSITION_MISMATCH = "Position mismatch"
    INVALID_REQUEST = "Invalid request"


@dataclass(frozen=True)
class VerificationOutcome:
    valid: bool
    accuracy: Optional[float] = None
    reason: Optional[FailureReason] = None
    captcha_token: Optional[str] = None

    @classmethod
    def success(cls, accuracy: float, captcha_token: Optional[str] = None):
        return cls(valid=True, accuracy=accuracy, captcha_token=captcha_token)

    @classmethod
    def failure(cls, reason: FailureReason, accuracy: Optional[float] = None):
        return cls(valid=False, accuracy=accuracy, reason=reason)

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"valid": self.valid}
        if self.accuracy is not None:
            body["accuracy"] = self.accuracy
        if self.reason is not None:
            body["reason"] = self.reason.value
        if self.captcha_token is not None:
            body["captchaToken"] = self.captcha_token
        return body


def compute_accuracy(user_x: float, target_x: float, canvas_width: int) -> float:
    """Percentage score of the horizontal offset; 100 means pixel-exact."""
    difference = abs(user_x - target_x)
    # Multiply before dividing so integer offsets land on exact values.
    return 100 - difference * 100 / canvas_width


def _is_number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints too large for a float
        return False


class Verifier:
    def __init__(
        self,
        store: SessionStore,
        geometry: Geometry = Geometry(),
        proofs: Optional[ProofLedger] = None,
        max_attempts: int = config.MAX_ATTEMPTS,
        min_duration_ms: float = config.MIN_DURATION_MS,
        max_duration_ms: float = config.MAX_DURATION_MS,
        accuracy_min: float = config.ACCURACY_MIN,
        accuracy_max: float = config.ACCURACY_MAX,
    ) -> None:
        self.store = store
        self.geometry = geometry
        self.proofs = proofs
        self.max_attempts = max_attempts
        self.min_duration_ms = min_duration_ms
        self.max_duration_ms = max_duration_ms
        self.accuracy_min = accuracy_min
        self.accuracy_max = accuracy_max

    def verify(self, session_id: Any, user_x: Any, duration: Any) -> VerificationOutcome:
        if not isinstance(session_id, str) or not session_id:
            return VerificationOutcome.failure(FailureReason.INVALID_REQUEST)
        if not _is_number(user_x) or not _is_number(duration):
            return VerificationOutcome.failure(FailureReason.INVALID_REQUEST)

        log = get_trace_logger(session_id)

        with self.store.atomic():
            session = self.store.get(session_id)
            if session is None:
                log.info("❌ Verify failed: session not found")
                return VerificationOutcome.failure(FailureReason.SESSION_EXPIRED)

            session.attempts += 1
            if session.attempts > self.max_attempts:
                self.store.delete(session_id)
                log.info("❌ Verify failed: too many attempts")
                return VerificationOutcome.failure(FailureReason.TOO_MANY_ATTEMPTS)

            if not self.min_duration_ms <= duration <= self.max_duration_ms:
                log.info("❌ Verify failed: invalid duration %sms", duration)
                return VerificationOutcome.failure(FailureReason.INVALID_DURATION)

            accuracy = compute_accuracy(
                user_x, session.target_x, self.geometry.canvas_width
            )
            log.info(
                "🎯 Verification: attempt=%d accuracy=%.2f%%",
                session.attempts,
                accuracy,
            )

            if self.accuracy_min <= accuracy < self.accuracy_max:
                self.store.delete(session_id)
                token = self.proofs.issue(session_id) if self.proofs else None
                log.info("✅ Captcha verified successfully")
                return VerificationOutcome.success(accuracy, token)

        log.info("❌ Verify failed: position mismatch (accuracy=%.2f%%)", accuracy)
        return VerificationOutcome.failure(FailureReason.POSITION_MISMATCH, accuracy)
