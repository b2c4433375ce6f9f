"""
Challenge orchestration
=======================
Owns one challenge round trip: load a challenge, fetch its images, take a
finished drag from the controller to the server, and on success exchange
the captcha proof for a full login.

Every failure ends in a state the user can retry from: the same challenge
is reset, or a fresh one is loaded.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from captcha_client.api import AuthAPI, CaptchaAPI, CaptchaClientError
from captcha_client.drag import DragController, DragState

logger = logging.getLogger("captcha_client")

SUCCESS_DELAY = 0.8  # seconds
ERROR_DELAY = 2.0
NETWORK_ERROR_DELAY = 3.0
IMAGE_RETRY_DELAY = 2.0
RELOAD_AFTER_FAILURES = 2

REASON_MESSAGES = {
    "Session expired": "Captcha expired, loading a new one.",
    "Too many attempts": "Too many attempts, loading a new captcha.",
    "Invalid duration": "Drag time was not right, try again.",
    "Position mismatch": "Position is not quite right, try again.",
}


class AttemptStatus(str, enum.Enum):
    SUCCESS = "success"  # verified and upgraded
    RETRY = "retry"  # same challenge reset
    RELOADED = "reloaded"  # a new challenge was loaded
    UPGRADE_FAILED = "upgrade_failed"  # captcha passed, login exchange failed


@dataclass
class AttemptResult:
    status: AttemptStatus
    message: str = ""
    auth: Optional[dict[str, Any]] = None


@dataclass
class Challenge:
    session_id: str
    background_url: str
    puzzle_url: str
    canvas_width: int
    canvas_height: int
    puzzle_width: int
    puzzle_height: int
    target_x: Optional[float] = None
    target_y: Optional[float] = None
    background: Optional[bytes] = None
    puzzle: Optional[bytes] = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "Challenge":
        return cls(
            session_id=data["sessionId"],
            background_url=data["backgroundImage"],
            puzzle_url=data["puzzleImage"],
            canvas_width=int(data["canvasWidth"]),
            canvas_height=int(data["canvasHeight"]),
            puzzle_width=int(data["puzzleWidth"]),
            puzzle_height=int(data["puzzleHeight"]),
            target_x=data.get("puzzleX"),
            target_y=data.get("puzzleY"),
        )


class CaptchaOrchestrator:
    def __init__(
        self,
        captcha_api: CaptchaAPI,
        auth_api: AuthAPI,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.captcha_api = captcha_api
        self.auth_api = auth_api
        self.sleep = sleep
        self.clock = clock

        self.challenge: Optional[Challenge] = None
        self.controller: Optional[DragController] = None
        self.failures = 0

    async def load(self) -> Challenge:
        """Fetch a new challenge and its images; retries on image errors."""
        while True:
            data = await self.captcha_api.generate()
            challenge = Challenge.from_payload(data)
            try:
                challenge.background = await self.captcha_api.image(challenge.background_url)
                challenge.puzzle = await self.captcha_api.image(challenge.puzzle_url)
            except CaptchaClientError as exc:
                logger.warning("❌ Image loading failed (%s), retrying", exc)
                await self.sleep(IMAGE_RETRY_DELAY)
                continue
            break

        kwargs = {"clock": self.clock} if self.clock else {}
        self.controller = DragController(
            challenge.canvas_width,
            challenge.puzzle_width,
            target_x=challenge.target_x,
            **kwargs,
        )
        self.challenge = challenge
        self.failures = 0
        return challenge

    async def finish_drag(self) -> AttemptResult:
        """
        Complete the drag the controller has just captured: release the
        pointer, verify locally, then with the server, and act on the result.
        """
        if self.controller is None or self.challenge is None:
            raise RuntimeError("No challenge loaded")

        verdict = self.controller.release()
        if verdict is None:
            return AttemptResult(AttemptStatus.RETRY, self.controller.message)
        if not verdict.passed:
            return await self._handle_failure(verdict.message)

        attempt = self.controller.attempt()
        try:
            result = await self.captcha_api.verify(
                self.challenge.session_id,
                attempt.position_x,
                attempt.duration_ms,
                attempt.path_payload(),
            )
        except CaptchaClientError as exc:
            logger.warning("❌ Verification error: %s", exc)
            self.controller.fail(exc.user_message)
            await self.sleep(NETWORK_ERROR_DELAY)
            return await self._reload(exc.user_message)

        if not result.get("valid"):
            reason = result.get("reason") or ""
            message = REASON_MESSAGES.get(reason, "Verification failed, try again.")
            # The server has dropped these sessions; retrying them is pointless.
            force_reload = reason in ("Session expired", "Too many attempts")
            return await self._handle_failure(message, force_reload=force_reload)

        return await self._handle_success(result)

    async def _handle_failure(self, message: str, force_reload: bool = False) -> AttemptResult:
        self.failures += 1
        self.controller.fail(message)
        await self.sleep(ERROR_DELAY)

        if force_reload or self.failures >= RELOAD_AFTER_FAILURES:
            return await self._reload(message)

        self.controller.reset()
        return AttemptResult(AttemptStatus.RETRY, message)

    async def _reload(self, message: str) -> AttemptResult:
        try:
            await self.load()
        except CaptchaClientError as exc:
            # Keep the current challenge so the user can still retry.
            logger.warning("❌ Captcha reload failed: %s", exc)
            self.controller.reset()
            return AttemptResult(AttemptStatus.RETRY, message)
        return AttemptResult(AttemptStatus.RELOADED, message)

    async def _handle_success(self, result: dict[str, Any]) -> AttemptResult:
        self.controller.succeed()
        await self.sleep(SUCCESS_DELAY)

        token = result.get("captchaToken")
        if not token:
            return AttemptResult(AttemptStatus.UPGRADE_FAILED, "Missing captcha token.")

        try:
            auth = await self.auth_api.upgrade_token(token)
        except CaptchaClientError as exc:
            logger.warning("❌ Token upgrade failed: %s", exc)
            return AttemptResult(AttemptStatus.UPGRADE_FAILED, exc.user_message)

        if not auth.get("success"):
            return AttemptResult(
                AttemptStatus.UPGRADE_FAILED, auth.get("error") or "Verification failed."
            )
        return AttemptResult(AttemptStatus.SUCCESS, "Signed in.", auth=auth)

    @property
    def state(self) -> DragState:
        return self.controller.state if self.controller else DragState.IDLE

