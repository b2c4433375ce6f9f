"""
Drag controller
===============
Turns pointer events into a drag attempt and runs the cheap local checks
before anything is sent to the server:

  idle ──press──▶ dragging ──release──▶ verifying ──▶ success
                                  │                  └──▶ error
                                  └──(local fail)──▶ error
  error / success ──reset──▶ idle

The local checks only save a round trip for attempts that are obviously
wrong; the server repeats its own verification regardless.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

# Local gate, looser than the server's on duration.
LOCAL_ACCURACY_MIN = 80.0
LOCAL_ACCURACY_MAX = 99.5  # exclusive
LOCAL_MIN_DURATION_MS = 300
LOCAL_MAX_DURATION_MS = 12_000

# Human-likeness heuristic.
MIN_SAMPLES = 3
FEW_SAMPLES = 5
SLOW_DRAG_MS = 800
VARIATION_LOW = 0.01
VARIATION_HIGH = 20.0
TELEPORT_PX = 100
TELEPORT_MS = 20


class DragState(str, enum.Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class DragSample:
    x: float  # pageX of the pointer
    t: float  # ms since the drag started


def overlap_accuracy(position: float, target: float, piece_width: float) -> float:
    """
    Share of the piece's horizontal span that lies over the hole, in percent.
    """
    piece_right = position + piece_width
    hole_right = target + piece_width
    if piece_right < target or position > hole_right:
        return 0.0
    overlap = min(piece_right, hole_right) - max(position, target)
    return overlap / piece_width * 100


def is_human_like(samples: Sequence[DragSample], total_ms: float) -> bool:
    """
    Reject paths that are too short, perfectly linear, too noisy, or that
    teleport more than 100px in under 20ms.
    """
    if len(samples) < MIN_SAMPLES:
        return False
    if len(samples) < FEW_SAMPLES and total_ms > SLOW_DRAG_MS:
        return True

    total_variation = 0.0
    triples = 0
    for prev, curr, nxt in zip(samples, samples[1:], samples[2:]):
        dt1 = curr.t - prev.t
        dt2 = nxt.t - curr.t
        if dt1 < 1 or dt2 < 1:
            continue
        v1 = (curr.x - prev.x) / dt1
        v2 = (nxt.x - curr.x) / dt2
        total_variation += abs(v2 - v1)
        triples += 1

    # Too few timed triples to judge.
    if triples < 2:
        return True

    avg_variation = total_variation / triples
    variation_ok = VARIATION_LOW < avg_variation < VARIATION_HIGH

    teleported = any(
        abs(b.x - a.x) > TELEPORT_PX and (b.t - a.t) < TELEPORT_MS
        for a, b in zip(samples, samples[1:])
    )
    return variation_ok and not teleported


@dataclass(frozen=True)
class LocalVerdict:
    accuracy: Optional[float]
    accuracy_ok: bool
    human_like: bool
    duration_ok: bool

    @property
    def passed(self) -> bool:
        return self.accuracy_ok and self.human_like and self.duration_ok

    @property
    def message(self) -> str:
        if not self.duration_ok:
            return "Invalid drag time, try again."
        if not self.accuracy_ok and (self.accuracy or 0) >= LOCAL_ACCURACY_MAX:
            return "Too precise. Try again."
        if not self.human_like:
            return "Unnatural movement detected, try again."
        return "Wrong position. Try again."


@dataclass
class DragAttempt:
    """What the server needs to verify one finished drag."""

    position_x: float
    duration_ms: float
    samples: list[DragSample] = field(default_factory=list)

    def path_payload(self) -> list[dict[str, float]]:
        return [{"x": s.x, "time": s.t} for s in self.samples]


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class DragController:
    """State machine for one challenge's piece; fed by pointer events."""

    def __init__(
        self,
        canvas_width: int,
        piece_width: int,
        target_x: Optional[float] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self.canvas_width = canvas_width
        self.piece_width = piece_width
        self.target_x = target_x
        self.clock = clock

        self.state = DragState.IDLE
        self.offset = 0.0
        self.samples: list[DragSample] = []
        self.message = ""
        self._started_at = 0.0
        self._duration = 0.0

    @property
    def max_offset(self) -> float:
        return self.canvas_width - self.piece_width

    def _elapsed(self) -> float:
        return self.clock() - self._started_at

    def press(self, page_x: float) -> bool:
        """Pointer down. Ignored while verifying or after success."""
        if self.state in (DragState.VERIFYING, DragState.SUCCESS):
            return False
        self.state = DragState.DRAGGING
        self.offset = 0.0
        self.message = ""
        self._started_at = self.clock()
        self.samples = [DragSample(page_x, 0.0)]
        return True

    def move(self, page_x: float, dx: float) -> None:
        """Pointer moved *dx* pixels from where it was pressed."""
        if self.state is not DragState.DRAGGING:
            return
        self.offset = max(0.0, min(self.max_offset, dx))
        self.samples.append(DragSample(page_x, self._elapsed()))

    def release(self) -> Optional[LocalVerdict]:
        """Pointer up: run the local checks and move to verifying or error."""
        if self.state is not DragState.DRAGGING:
            return None
        self._duration = self._elapsed()

        if self.target_x is None:
            accuracy, accuracy_ok = None, True
        else:
            accuracy = overlap_accuracy(self.offset, self.target_x, self.piece_width)
            accuracy_ok = LOCAL_ACCURACY_MIN <= accuracy < LOCAL_ACCURACY_MAX

        verdict = LocalVerdict(
            accuracy=accuracy,
            accuracy_ok=accuracy_ok,
            human_like=is_human_like(self.samples, self._duration),
            duration_ok=LOCAL_MIN_DURATION_MS <= self._duration <= LOCAL_MAX_DURATION_MS,
        )
        if verdict.passed:
            self.state = DragState.VERIFYING
            self.message = "Verifying..."
        else:
            self.fail(verdict.message)
        return verdict

    def attempt(self) -> DragAttempt:
        return DragAttempt(self.offset, self._duration, list(self.samples))

    def succeed(self) -> None:
        """Server accepted: snap the piece onto the hole."""
        self.state = DragState.SUCCESS
        if self.target_x is not None:
            self.offset = float(self.target_x)
        self.message = "Verified!"

    def fail(self, message: str) -> None:
        self.state = DragState.ERROR
        self.message = message

    def reset(self) -> None:
        self.state = DragState.IDLE
        self.offset = 0.0
        self.samples = []
        self.message = ""
        self._started_at = 0.0
        self._duration = 0.0
