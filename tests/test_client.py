import asyncio
import json

import httpx
import pytest

from captcha_client.api import (
    AuthAPI,
    CaptchaAPI,
    CaptchaClientError,
    FileTokenStorage,
    NetworkOrTimeout,
)
from captcha_client.drag import DragState
from captcha_client.orchestrator import AttemptStatus, CaptchaOrchestrator

from conftest import FakeClock

CHALLENGE = {
    "sessionId": "a" * 32,
    "backgroundImage": "/api/captcha/image/" + "a" * 32 + "/background",
    "puzzleImage": "/api/captcha/image/" + "a" * 32 + "/puzzle",
    "canvasWidth": 300,
    "canvasHeight": 200,
    "puzzleWidth": 60,
    "puzzleHeight": 60,
    "puzzleX": 120,
    "puzzleY": 50,
}

HUMAN_MOVES = [(100, 5), (216, 15), (333, 22), (450, 40), (566, 48), (683, 60), (800, 80), (1000, 110)]


class FakeServices:
    """Routes captcha and auth requests to canned answers and records them."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.verify_answers = [{"valid": True, "accuracy": 96.67, "captchaToken": "proof"}]
        self.image_failures = 0
        self.verify_error = None
        self.generate_status = 200

    def paths(self):
        return [r.url.path for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/captcha/generate":
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={"error": "Failed to generate captcha"})
            return httpx.Response(200, json=CHALLENGE)
        if path.startswith("/api/captcha/image/"):
            if self.image_failures:
                self.image_failures -= 1
                return httpx.Response(404, json={"error": "Image not found"})
            return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
        if path == "/api/captcha/verify":
            if self.verify_error:
                raise self.verify_error
            answer = self.verify_answers[0]
            if len(self.verify_answers) > 1:
                self.verify_answers.pop(0)
            return httpx.Response(200, json=answer)
        if path == "/api/login":
            return httpx.Response(200, json={"pendingToken": "pending", "captchaRequired": True})
        if path == "/api/auth/upgrade":
            assert request.headers["authorization"] == "Bearer pending"
            return httpx.Response(
                200,
                json={"success": True, "token": "access", "user": {"id": "u1", "email": "a@b.co"}},
            )
        return httpx.Response(404, json={"detail": "Not Found"})


@pytest.fixture()
def services():
    return FakeServices()


@pytest.fixture()
def ms_clock():
    return FakeClock(0.0)


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def orchestrator(services, ms_clock, sleeps):
    transport = httpx.MockTransport(services)

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    auth = AuthAPI("http://auth.test", transport=transport)
    auth.storage.set("pendingToken", "pending")
    return CaptchaOrchestrator(
        CaptchaAPI("http://captcha.test", transport=transport),
        auth,
        sleep=fake_sleep,
        clock=ms_clock,
    )


def _drag(orchestrator, clock, moves=HUMAN_MOVES, release_at=1500):
    controller = orchestrator.controller
    clock.now = 0.0
    controller.press(400)
    for t, dx in moves:
        clock.now = float(t)
        controller.move(400 + dx, dx)
    clock.now = float(release_at)
    return asyncio.run(orchestrator.finish_drag())


def test_successful_round_trip(orchestrator, services, ms_clock, sleeps):
    challenge = asyncio.run(orchestrator.load())
    assert challenge.background == b"\x89PNG"
    assert challenge.target_x == 120

    result = _drag(orchestrator, ms_clock)

    assert result.status is AttemptStatus.SUCCESS
    assert result.auth["token"] == "access"
    assert sleeps == [0.8]
    assert orchestrator.state is DragState.SUCCESS

    verify = next(r for r in services.requests if r.url.path == "/api/captcha/verify")
    body = json.loads(verify.content)
    assert body["positionX"] == 110
    assert body["duration"] == 1500
    assert len(body["dragPath"]) == 9

    storage = orchestrator.auth_api.storage
    assert storage.get("token") == "access"
    assert storage.get("pendingToken") is None


def test_server_rejections_retry_then_reload(orchestrator, services, ms_clock, sleeps):
    services.verify_answers = [{"valid": False, "accuracy": 60.0, "reason": "Position mismatch"}]
    asyncio.run(orchestrator.load())

    first = _drag(orchestrator, ms_clock)
    assert first.status is AttemptStatus.RETRY
    assert orchestrator.state is DragState.IDLE

    second = _drag(orchestrator, ms_clock)
    assert second.status is AttemptStatus.RELOADED
    assert services.paths().count("/api/captcha/generate") == 2
    assert orchestrator.failures == 0
    assert sleeps == [2.0, 2.0]


@pytest.mark.parametrize("reason", ["Session expired", "Too many attempts"])
def test_dead_session_reloads_immediately(orchestrator, services, ms_clock, reason):
    services.verify_answers = [{"valid": False, "reason": reason}]
    asyncio.run(orchestrator.load())

    result = _drag(orchestrator, ms_clock)

    assert result.status is AttemptStatus.RELOADED
    assert services.paths().count("/api/captcha/generate") == 2


def test_failed_reload_after_rejection_keeps_challenge(orchestrator, services, ms_clock, sleeps):
    asyncio.run(orchestrator.load())
    challenge = orchestrator.challenge
    services.verify_answers = [{"valid": False, "reason": "Session expired"}]
    services.generate_status = 503

    result = _drag(orchestrator, ms_clock)

    assert result.status is AttemptStatus.RETRY
    assert result.message == "Captcha expired, loading a new one."
    assert orchestrator.challenge is challenge
    assert orchestrator.state is DragState.IDLE
    assert sleeps == [2.0]


def test_local_failure_never_reaches_server(orchestrator, services, ms_clock, sleeps):
    asyncio.run(orchestrator.load())

    result = _drag(orchestrator, ms_clock, moves=[(t, dx - 60) for t, dx in HUMAN_MOVES])

    assert result.status is AttemptStatus.RETRY
    assert result.message == "Wrong position. Try again."
    assert "/api/captcha/verify" not in services.paths()
    assert sleeps == [2.0]


def test_network_error_during_verify_reloads(orchestrator, services, ms_clock, sleeps):
    services.verify_error = httpx.ConnectError("connection refused")
    asyncio.run(orchestrator.load())

    result = _drag(orchestrator, ms_clock)

    assert result.status is AttemptStatus.RELOADED
    assert result.message == "Cannot reach the server. Please try again."
    assert sleeps == [3.0]
    assert services.paths().count("/api/captcha/generate") == 2
    assert orchestrator.state is DragState.IDLE


def test_network_error_with_failed_reload_keeps_challenge(orchestrator, services, ms_clock, sleeps):
    asyncio.run(orchestrator.load())
    challenge = orchestrator.challenge

    def offline(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport = httpx.MockTransport(offline)
    orchestrator.captcha_api.transport = transport

    result = _drag(orchestrator, ms_clock)

    assert result.status is AttemptStatus.RETRY
    assert orchestrator.challenge is challenge
    assert orchestrator.state is DragState.IDLE
    assert sleeps == [3.0]


def test_image_failure_retries_load(orchestrator, services, sleeps):
    services.image_failures = 1
    asyncio.run(orchestrator.load())

    assert sleeps == [2.0]
    assert services.paths().count("/api/captcha/generate") == 2


def test_finish_drag_requires_a_challenge(orchestrator):
    with pytest.raises(RuntimeError):
        asyncio.run(orchestrator.finish_drag())


# ──────────────────────────────────────────────
# HTTP client details
# ──────────────────────────────────────────────
def test_error_status_maps_to_user_message():
    def handler(request):
        return httpx.Response(409, json={"error": "User already exists"})

    auth = AuthAPI("http://auth.test", transport=httpx.MockTransport(handler))
    with pytest.raises(CaptchaClientError) as excinfo:
        asyncio.run(auth.signup("Ada", "ada@example.com", "secret1"))

    assert excinfo.value.status == 409
    assert str(excinfo.value) == "User already exists"
    assert excinfo.value.user_message == "Email already in use."


def test_timeout_is_network_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    api = CaptchaAPI("http://captcha.test", transport=httpx.MockTransport(handler))
    with pytest.raises(NetworkOrTimeout) as excinfo:
        asyncio.run(api.generate())
    assert excinfo.value.user_message == "Connection too slow. Please try again."


def test_login_keeps_pending_token_in_file_storage(tmp_path, services):
    path = tmp_path / "tokens.json"
    auth = AuthAPI(
        "http://auth.test",
        storage=FileTokenStorage(path),
        transport=httpx.MockTransport(services),
    )
    data = asyncio.run(auth.login("ada@example.com", "secret1"))

    assert data["captchaRequired"] is True
    assert FileTokenStorage(path).get("pendingToken") == "pending"


def test_logout_clears_session_even_if_call_fails(services):
    auth = AuthAPI("http://auth.test", transport=httpx.MockTransport(services))
    auth.storage.set("token", "access")
    auth.storage.set("user", "{}")

    asyncio.run(auth.logout())  # /api/logout answers 404 here

    assert auth.storage.get("token") is None
    assert auth.storage.get("user") is None
