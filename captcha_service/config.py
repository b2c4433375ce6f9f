"""
Service configuration.

Constants are read once at import time; the ones that differ between
deployments can be overridden through environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ──────────────────────────────────────────────
# Assets
# ──────────────────────────────────────────────
ASSETS_DIR = Path(
    os.environ.get("CAPTCHA_ASSETS_DIR", str(Path(__file__).parent / "assets"))
)
BACKGROUND_COUNT = 36  # image/01.png … image/36.png
PUZZLE_SHAPE_COUNT = 4  # puzzle/1.png … puzzle/4.png

# ──────────────────────────────────────────────
# Geometry
# ──────────────────────────────────────────────
CANVAS_WIDTH = 300
CANVAS_HEIGHT = 200
PUZZLE_WIDTH = 60
PUZZLE_HEIGHT = 60
HORIZONTAL_MARGIN = 40
VERTICAL_MARGIN = 20

# ──────────────────────────────────────────────
# Sessions & verification
# ──────────────────────────────────────────────
SESSION_TTL_SECONDS = float(os.environ.get("CAPTCHA_SESSION_TTL", "300"))  # 5 minutes
MAX_ATTEMPTS = 5
MIN_DURATION_MS = 500
MAX_DURATION_MS = 10_000
ACCURACY_MIN = 85.0
ACCURACY_MAX = 99.5  # exclusive

# The reference response carries puzzleX/puzzleY so the client can place
# the hole. Turn this off once the hole is rendered into the background.
EXPOSE_TARGET = _env_flag("CAPTCHA_EXPOSE_TARGET", True)

# ──────────────────────────────────────────────
# Verification proof (exchanged for full authentication)
# ──────────────────────────────────────────────
PROOF_SECRET: str = os.environ.get(
    "CAPTCHA_PROOF_SECRET",
    "5f0e8c2a9b7d41e3a6c4d2b1f09e8a7c" +
    "3d2e1f0a9b8c7d6e5f4a3b2c1d0e9f8a",
)
PROOF_TTL_SECONDS = 300

# ──────────────────────────────────────────────
# Misc
# ──────────────────────────────────────────────
DEBUG_ENDPOINTS = _env_flag("CAPTCHA_DEBUG", False)
LOG_LEVEL = os.environ.get("CAPTCHA_LOG_LEVEL", "INFO").upper()
