"""
Slider Jigsaw CAPTCHA Service
=============================
A FastAPI service that gates login behind a drag-the-piece jigsaw puzzle.

The client fetches a challenge, renders the background with the puzzle piece,
and reports where the user dropped the piece and how long the drag took.

API:
  GET  /api/captcha/generate                 ->  challenge payload
  POST /api/captcha/verify                   ->  { valid, accuracy?, reason? }
  GET  /api/captcha/image/{session_id}/{type} ->  raw image bytes
  POST /api/captcha/redeem                   ->  { valid, sessionId? }
  GET  /api/health                           ->  { status: "ok" }

Security:
  - Session ids come from the OS CSPRNG (16 bytes).
  - A successful verification consumes the session; the returned
    captchaToken can be redeemed only once.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from captcha_service import config
from captcha_service.assets import AssetCatalog
from captcha_service.behavior import analyze_drag_path, parse_drag_path
from captcha_service.challenge import ChallengeGenerator, Geometry, Verifier
from captcha_service.errors import AssetReadError, ImageServeError, InvalidProof, NoAssetsAvailable
from captcha_service.images import ImageServer
from captcha_service.logs import configure_logging, get_trace_logger, logger
from captcha_service.proof import ProofLedger
from captcha_service.sessions import InMemorySessionStore

configure_logging()

# ──────────────────────────────────────────────
# App & CORS
# ──────────────────────────────────────────────
app = FastAPI(
    title="Slider CAPTCHA",
    description="Drag-the-piece jigsaw CAPTCHA for login.",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ──────────────────────────────────────────────
# Engine components
# ──────────────────────────────────────────────
# Sessions are process-local and vanish on restart. Swap the store for a
# shared backend before running more than one worker.
session_store = InMemorySessionStore()
asset_catalog = AssetCatalog()
geometry = Geometry()
proof_ledger = ProofLedger()

generator = ChallengeGenerator(asset_catalog, session_store, geometry)
verifier = Verifier(session_store, geometry, proofs=proof_ledger)
image_server = ImageServer(asset_catalog, session_store)


@app.get("/", response_class=HTMLResponse)
async def root():
    """Service info page."""
    return (
        "<!DOCTYPE html>"
        '<html lang="en"><head>'
        '<meta charset="UTF-8" />'
        "<title>Slider CAPTCHA Service</title>"
        "</head><body>"
        "<h1>Slider CAPTCHA Service</h1>"
        "<p><strong>API endpoints:</strong></p>"
        "<ul>"
        "<li><code>GET /api/captcha/generate</code> - generate a new puzzle</li>"
        "<li><code>POST /api/captcha/verify</code> - verify a drag</li>"
        "<li><code>GET /api/captcha/image/{session_id}/{type}</code> - puzzle images</li>"
        "<li><code>POST /api/captcha/redeem</code> - redeem a captcha token</li>"
        "</ul>"
        "</body></html>"
    )


@app.get("/api/health")
async def health() -> dict[str, Any]:
    return {"status": "ok", "sessions": len(session_store)}


async def _json_object(request: Request) -> dict[str, Any]:
    """Request body as a dict; anything else (bad JSON, a list, …) is empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


# ──────────────────────────────────────────────
# API Endpoints
# ──────────────────────────────────────────────
@app.get("/api/captcha/generate")
async def generate_captcha():
    """
    **GET /api/captcha/generate**

    ```json
    {
      "sessionId": "<32 hex chars>",
      "backgroundImage": "/api/captcha/image/<id>/background",
      "puzzleImage": "/api/captcha/image/<id>/puzzle",
      "canvasWidth": 300, "canvasHeight": 200,
      "puzzleWidth": 60, "puzzleHeight": 60,
      "puzzleX": 120, "puzzleY": 48
    }
    ```
    """
    try:
        return generator.generate()
    except NoAssetsAvailable as exc:
        logger.error("💥 Captcha generation error: %s", exc)
        return JSONResponse({"error": "Failed to generate captcha"}, status_code=503)


@app.post("/api/captcha/verify")
async def verify_captcha(request: Request) -> dict[str, Any]:
    """
    **POST /api/captcha/verify**

    ```json
    { "sessionId": "...", "positionX": 118, "duration": 1840,
      "dragPath": [{ "x": 412, "time": 0 }, ...] }
    ```

    Always answers 200; failures carry ``valid: false`` and a ``reason``.
    ``dragPath`` is optional and only feeds the advisory ``analysis``.
    """
    body = await _json_object(request)
    session_id = body.get("sessionId")
    outcome = verifier.verify(session_id, body.get("positionX"), body.get("duration"))
    result = outcome.to_payload()

    if "dragPath" in body:
        log = get_trace_logger(session_id if isinstance(session_id, str) else None)
        try:
            analysis = analyze_drag_path(parse_drag_path(body.get("dragPath")))
        except Exception:
            # The outcome above is already final; never lose it to the advisory step.
            log.exception("💥 Path analysis failed")
            return result
        log.info(
            "🔎 Path analysis: score=%d flags=%s",
            analysis["confidence_score"],
            ",".join(analysis["flags"]) or "none",
        )
        result["analysis"] = analysis

    return result


@app.get("/api/captcha/image/{session_id}/{image_type}")
async def captcha_image(session_id: str, image_type: str):
    """Raw bytes of the session's background or puzzle piece."""
    try:
        data, media_type = image_server.get(session_id, image_type)
    except AssetReadError:
        # Already logged with the path; the client only sees a not-found.
        return JSONResponse({"error": "Image not found"}, status_code=404)
    except ImageServeError as exc:
        get_trace_logger(session_id).warning(
            "❌ Image request rejected: %s", type(exc).__name__
        )
        return JSONResponse({"error": "Image not found"}, status_code=404)
    return Response(content=data, media_type=media_type)


@app.post("/api/captcha/redeem")
async def redeem_captcha_token(request: Request) -> dict[str, Any]:
    """
    **POST /api/captcha/redeem**

    Called by the authentication service with ``{ "captchaToken": "..." }``.
    Each token is good for exactly one redemption.
    """
    token = (await _json_object(request)).get("captchaToken")
    if not isinstance(token, str) or not token:
        return {"valid": False, "reason": "Missing captchaToken."}

    try:
        session_id = proof_ledger.redeem(token)
    except InvalidProof as exc:
        logger.info("❌ Captcha token rejected: %s", exc)
        return {"valid": False, "reason": str(exc)}

    get_trace_logger(session_id).info("✅ Captcha token redeemed")
    return {"valid": True, "sessionId": session_id}


@app.get("/api/captcha/sessions")
async def active_sessions():
    """Diagnostics listing of live sessions (only with CAPTCHA_DEBUG on)."""
    if not config.DEBUG_ENDPOINTS:
        return JSONResponse({"error": "Not found"}, status_code=404)

    now = session_store.clock()
    return {
        "sessions": [
            {
                "id": s.id,
                "backgroundImage": s.background,
                "puzzleShape": s.puzzle,
                "attempts": s.attempts,
                "age": f"{int(s.age(now))}s",
            }
            for s in session_store.snapshot()
        ]
    }


# ──────────────────────────────────────────────
# Run with: uvicorn captcha_service.main:app --reload
# ──────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("captcha_service.main:app", host="0.0.0.0", port=8000, reload=True)
