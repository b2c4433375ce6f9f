"""Serve a session's background / puzzle image bytes."""

from __future__ import annotations

import io

from PIL import Image, UnidentifiedImageError

from captcha_service.assets import AssetCatalog
from captcha_service.errors import AssetReadError, InvalidRole, InvalidSession
from captcha_service.logs import get_trace_logger
from captcha_service.sessions import SessionStore

ROLES = ("background", "puzzle")


class ImageServer:
    def __init__(self, catalog: AssetCatalog, store: SessionStore) -> None:
        self.catalog = catalog
        self.store = store

    def get(self, session_id: str, role: str) -> tuple[bytes, str]:
        """
        Return ``(data, media_type)`` for the asset *session_id* was assigned
        under *role*.  Never mutates the session.
        """
        if role not in ROLES:
            raise InvalidRole(role)

        session = self.store.get(session_id)
        if session is None:
            raise InvalidSession(session_id)

        ref = session.background if role == "background" else session.puzzle
        path = self.catalog.resolve(ref)
        log = get_trace_logger(session_id)

        try:
            data = path.read_bytes()
            with Image.open(io.BytesIO(data)) as img:
                media_type = Image.MIME.get(img.format or "", "application/octet-stream")
        except (OSError, UnidentifiedImageError) as exc:
            log.error("💥 Could not read %s asset %s: %s", role, path, exc)
            raise AssetReadError(ref) from exc

        log.info("📸 Serving %s: %s", role, ref)
        return data, media_type
