"""
Advisory drag-path analysis
===========================
The client may send the raw drag path alongside its verification attempt.
The score computed here is logged and echoed back, but it never decides
whether a verification passes: the client controls that data.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import numpy as np

MAX_PATH_POINTS = 600


@dataclass
class PathPoint:
    x: float
    time: float


def parse_drag_path(path: Any) -> list[PathPoint]:
    parsed: list[PathPoint] = []
    if not isinstance(path, list):
        return parsed

    for point in path[:MAX_PATH_POINTS]:
        if not isinstance(point, dict):
            continue
        try:
            x = float(point.get("x", 0))
            t = float(point.get("time", 0))
        except (TypeError, ValueError, OverflowError):
            continue
        if math.isfinite(x) and math.isfinite(t):
            parsed.append(PathPoint(x=x, time=t))

    return parsed


def analyze_drag_path(path: list[PathPoint]) -> dict[str, Any]:
    flags = []
    score = 100

    if len(path) < 4:
        flags.append("insufficient_path_data")
        score -= 40
    else:
        xs = np.array([p.x for p in path], dtype=float)
        ts = np.array([p.time for p in path], dtype=float)
        dx = np.diff(xs)
        dt = np.diff(ts)

        moving = dt > 0
        if moving.sum() >= 3:
            velocities = dx[moving] / dt[moving]
            if velocities.var() < 0.003:
                flags.append("linear_velocity_pattern")
                score -= 25

        steps = np.abs(dx[dx != 0])
        if len(steps) >= 4 and steps.var() < 0.2:
            flags.append("uniform_step_pattern")
            score -= 15

        if len(np.unique(xs.astype(int))) < 4:
            flags.append("low_position_entropy")
            score -= 15

        if np.any((np.abs(dx) > 100) & (dt < 20)):
            flags.append("teleport_jump")
            score -= 35

        if np.any(dt < 0):
            flags.append("non_monotonic_time")
            score -= 20

    score = max(0, min(100, score))
    return {
        "is_bot": score < 60,
        "confidence_score": score,
        "flags": flags,
        "path_points": len(path),
    }
