"""
JSON-file user store.

Users live in a single ``users.json`` list; the file and its directory are
created on first use.  All access goes through one process lock.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("demo_app")


class UserStore:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("[]", encoding="utf-8")
            logger.info("📄 Created %s", self.path.name)
            return []
        return json.loads(self.path.read_text(encoding="utf-8"))

    def _write(self, users: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(users, indent=2), encoding="utf-8")

    def add(self, user: dict[str, Any]) -> None:
        with self._lock:
            users = self._read()
            if any(u["email"] == user["email"] for u in users):
                raise ValueError(f"Email '{user['email']}' already exists")
            users.append(user)
            self._write(users)

    def find_by_email(self, email: str) -> Optional[dict[str, Any]]:
        wanted = email.strip().lower()
        with self._lock:
            for user in self._read():
                if user["email"].lower() == wanted:
                    return user
        return None

    def update(self, user: dict[str, Any]) -> None:
        with self._lock:
            users = self._read()
            for i, existing in enumerate(users):
                if existing["id"] == user["id"]:
                    users[i] = user
                    break
            else:
                raise KeyError(user["id"])
            self._write(users)

    def count(self) -> int:
        with self._lock:
            return len(self._read())
