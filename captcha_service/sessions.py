"""
Challenge sessions
==================
Session state lives only in the process. Callers reference a session by id
on every operation; the store owns the ``ChallengeSession`` objects.

Read-modify-write sequences (attempt increment, cap check, delete) must run
inside ``store.atomic()`` so two requests racing on the same id cannot both
observe an attempt count below the cap. The expiry sweep takes the same
lock, so it never removes a session halfway through a verification.
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Optional

from captcha_service.assets import AssetRef


@dataclass
class ChallengeSession:
    id: str
    background: AssetRef
    puzzle: AssetRef
    target_x: int
    target_y: int
    created_at: float
    attempts: int = 0

    def age(self, now: float) -> float:
        return now - self.created_at


class SessionStore(ABC):
    """Narrow interface the generator, verifier and image server rely on."""

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """Serialize a compound operation against every other store call."""

    @abstractmethod
    def create(self, session: ChallengeSession) -> None: ...

    @abstractmethod
    def get(self, session_id: str) -> Optional[ChallengeSession]:
        """Return the session, or ``None`` if it does not exist."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Remove the session. Deleting an unknown id is a no-op."""

    @abstractmethod
    def sweep_expired(self, now: float, ttl: float) -> int:
        """Drop sessions older than *ttl* seconds; return how many were dropped."""

    @abstractmethod
    def snapshot(self) -> list[ChallengeSession]:
        """Copy of the live sessions, for diagnostics."""

    @abstractmethod
    def __len__(self) -> int: ...


class InMemorySessionStore(SessionStore):
    """Dict-backed store guarded by a re-entrant lock."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, ChallengeSession] = {}
        self.clock = clock

    def atomic(self) -> AbstractContextManager:
        return self._lock

    def create(self, session: ChallengeSession) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[ChallengeSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def sweep_expired(self, now: float, ttl: float) -> int:
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items() if s.age(now) > ttl
            ]
            for sid in expired:
                del self._sessions[sid]
        return len(expired)

    def snapshot(self) -> list[ChallengeSession]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
