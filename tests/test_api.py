from captcha_service import config

from conftest import write_png


def _generate(client) -> dict:
    resp = client.get("/api/captcha/generate")
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "sessions": 0}


def test_generate_verify_redeem_flow(client, store):
    challenge = _generate(client)
    sid = challenge["sessionId"]
    assert challenge["puzzleX"] == 120
    assert store.get(sid) is not None

    resp = client.post(
        "/api/captcha/verify",
        json={"sessionId": sid, "positionX": 126, "duration": 1800},
    )
    body = resp.json()
    assert resp.status_code == 200
    assert body["valid"] is True
    assert body["accuracy"] == 98.0
    token = body["captchaToken"]

    redeemed = client.post("/api/captcha/redeem", json={"captchaToken": token}).json()
    assert redeemed == {"valid": True, "sessionId": sid}

    replay = client.post("/api/captcha/redeem", json={"captchaToken": token}).json()
    assert replay["valid"] is False


def test_verify_mismatch_reports_accuracy(client):
    sid = _generate(client)["sessionId"]
    body = client.post(
        "/api/captcha/verify",
        json={"sessionId": sid, "positionX": 0, "duration": 1800},
    ).json()
    assert body == {"valid": False, "accuracy": 60.0, "reason": "Position mismatch"}


def test_verify_unknown_session(client):
    body = client.post(
        "/api/captcha/verify",
        json={"sessionId": "0" * 32, "positionX": 100, "duration": 1800},
    ).json()
    assert body == {"valid": False, "reason": "Session expired"}


def test_malformed_verify_bodies_do_not_count_attempts(client, store):
    sid = _generate(client)["sessionId"]

    bodies = [
        {"content": b"{not json", "headers": {"content-type": "application/json"}},
        {"json": [1, 2, 3]},
        {"json": {"sessionId": sid}},
        {"json": {"sessionId": sid, "positionX": "120", "duration": 1800}},
        {"json": {"sessionId": sid, "positionX": 120, "duration": None}},
    ]
    for kwargs in bodies:
        resp = client.post("/api/captcha/verify", **kwargs)
        assert resp.status_code == 200
        assert resp.json() == {"valid": False, "reason": "Invalid request"}

    assert store.get(sid).attempts == 0


def test_verify_with_drag_path_adds_analysis(client):
    sid = _generate(client)["sessionId"]
    path = [{"x": 400 + dx, "time": t} for dx, t in [(0, 0), (3, 90), (20, 210), (70, 330), (110, 480), (124, 700)]]
    body = client.post(
        "/api/captcha/verify",
        json={"sessionId": sid, "positionX": 124, "duration": 900, "dragPath": path},
    ).json()

    assert body["valid"] is True
    assert body["analysis"]["path_points"] == 6
    assert "is_bot" in body["analysis"]


def test_image_endpoints(client, assets_dir):
    challenge = _generate(client)

    bg = client.get(challenge["backgroundImage"])
    assert bg.status_code == 200
    assert bg.headers["content-type"] == "image/png"
    assert bg.content == (assets_dir / "image" / "01.png").read_bytes()

    piece = client.get(challenge["puzzleImage"])
    assert piece.status_code == 200
    assert piece.content == (assets_dir / "puzzle" / "2.png").read_bytes()


def test_image_errors_are_plain_404(client, assets_dir):
    sid = _generate(client)["sessionId"]

    for url in (
        f"/api/captcha/image/{sid}/thumbnail",
        f"/api/captcha/image/{'f' * 32}/background",
    ):
        resp = client.get(url)
        assert resp.status_code == 404
        assert resp.json() == {"error": "Image not found"}

    (assets_dir / "image" / "01.png").unlink()
    resp = client.get(f"/api/captcha/image/{sid}/background")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Image not found"}
    assert str(assets_dir) not in resp.text


def test_generate_without_assets_is_503(client, assets_dir):
    for png in (assets_dir / "puzzle").glob("*.png"):
        png.unlink()

    resp = client.get("/api/captcha/generate")
    assert resp.status_code == 503
    assert resp.json() == {"error": "Failed to generate captcha"}


def test_generate_picks_up_new_assets_without_restart(client, assets_dir):
    for png in (assets_dir / "image").glob("*.png"):
        png.unlink()
    assert client.get("/api/captcha/generate").status_code == 503

    write_png(assets_dir / "image" / "12.png")
    assert client.get("/api/captcha/generate").status_code == 200


def test_redeem_requires_token(client):
    body = client.post("/api/captcha/redeem", json={}).json()
    assert body["valid"] is False


def test_sessions_listing_is_debug_only(client, monkeypatch):
    _generate(client)
    assert client.get("/api/captcha/sessions").status_code == 404

    monkeypatch.setattr(config, "DEBUG_ENDPOINTS", True)
    listing = client.get("/api/captcha/sessions").json()["sessions"]
    assert len(listing) == 1
    assert listing[0]["attempts"] == 0
    assert listing[0]["age"] == "0s"


def test_oversized_integer_position_is_invalid_request(client, store):
    sid = _generate(client)["sessionId"]
    raw = (
        b'{"sessionId": "' + sid.encode() + b'", "positionX": 1' + b"0" * 400
        + b', "duration": 1800}'
    )
    resp = client.post(
        "/api/captcha/verify", content=raw, headers={"content-type": "application/json"}
    )

    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "reason": "Invalid request"}
    assert store.get(sid).attempts == 0


def test_bad_drag_path_never_costs_a_successful_verification(client):
    sid = _generate(client)["sessionId"]
    raw = (
        b'{"sessionId": "' + sid.encode() + b'", "positionX": 130, "duration": 1800,'
        b' "dragPath": [{"x": 1' + b"0" * 400 + b', "time": 0}]}'
    )
    resp = client.post(
        "/api/captcha/verify", content=raw, headers={"content-type": "application/json"}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is True
    assert body["captchaToken"].startswith(sid + ".")
    assert body["analysis"]["path_points"] == 0


def test_redeem_non_ascii_token(client):
    resp = client.post("/api/captcha/redeem", json={"captchaToken": "abc.1700000000.é"})
    assert resp.status_code == 200
    assert resp.json()["valid"] is False
