"""
Verification proofs
===================
A successful verification is turned into a signed token the client hands to
the authentication service, which redeems it here exactly once.

Token layout::

    <session_id>.<issued_at>.<hmac_sha256_hex>

The HMAC covers ``<session_id>.<issued_at>`` and is keyed with
``config.PROOF_SECRET`` so a client cannot forge or alter a proof.
"""

from __future__ import annotations

import hashlib
import hmac
import threading
import time
from typing import Callable

from captcha_service import config
from captcha_service.errors import InvalidProof


class ProofLedger:
    """Issues proofs and remembers which ones were already redeemed."""

    def __init__(
        self,
        secret: str = config.PROOF_SECRET,
        ttl: float = config.PROOF_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret.encode()
        self.ttl = ttl
        self.clock = clock
        self._lock = threading.Lock()
        # Redeemed signatures → expiry timestamp.
        self._used: dict[str, float] = {}

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def issue(self, session_id: str) -> str:
        payload = f"{session_id}.{int(self.clock())}"
        return f"{payload}.{self._sign(payload)}"

    def _purge_expired(self, now: float) -> None:
        expired = [k for k, exp in self._used.items() if exp <= now]
        for k in expired:
            del self._used[k]

    def redeem(self, token: str) -> str:
        """
        Validate and burn *token*; return the session id it was issued for.

        Raises ``InvalidProof`` if the token is malformed, its signature does
        not match, it is older than the TTL, or it was already redeemed.
        """
        try:
            session_id, issued_raw, signature = token.split(".")
            issued_at = int(issued_raw)
        except (AttributeError, ValueError):
            raise InvalidProof("Malformed captcha token.")

        expected = self._sign(f"{session_id}.{issued_raw}")
        if not hmac.compare_digest(signature.encode(), expected.encode()):
            raise InvalidProof("Invalid captcha token signature.")

        now = self.clock()
        age = now - issued_at
        if age < 0 or age > self.ttl:
            raise InvalidProof("Captcha token expired.")

        with self._lock:
            self._purge_expired(now)
            if signature in self._used:
                raise InvalidProof("Captcha token already used.")
            self._used[signature] = issued_at + self.ttl

        return session_id
