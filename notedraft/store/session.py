"""Cached note.com login state (Playwright storage state: cookies + local storage)."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from loguru import logger

from notedraft.utils.helpers import atomic_write_json

REQUIRED_COOKIE_KEYS = ("name", "value", "domain")


def is_valid_session(data: Any) -> bool:
    """True when `data` is a complete, directly-loadable storage state."""
    if not isinstance(data, dict):
        return False
    cookies = data.get("cookies")
    if not isinstance(cookies, list):
        return False
    for cookie in cookies:
        if not isinstance(cookie, dict):
            return False
        if any(not isinstance(cookie.get(key), str) for key in REQUIRED_COOKIE_KEYS):
            return False
    origins = data.get("origins", [])
    if not isinstance(origins, list):
        return False
    return all(isinstance(origin, dict) and isinstance(origin.get("origin"), str) for origin in origins)


class SessionStore:
    """Load/save the session snapshot.

    An inline JSON blob (``NOTE_SESSION_JSON``) wins over the on-disk file so that
    stateless deployments can ship a session without a writable volume.
    """

    def __init__(self, path: Path, inline_json: str | None = None):
        self.path = path
        self.inline_json = inline_json

    def _parse(self, raw: str, source: str) -> dict[str, Any] | None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Session from {} is not valid JSON, treating as absent: {}", source, exc)
            return None
        if not is_valid_session(data):
            logger.warning("Session from {} is incomplete, treating as absent", source)
            return None
        return data

    def load(self) -> dict[str, Any] | None:
        """Return the cached session, or None when absent or unusable."""
        if self.inline_json:
            session = self._parse(self.inline_json, "NOTE_SESSION_JSON")
            if session is not None:
                return session

        if not self.path.exists():
            return None
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed reading session file {}: {}", self.path, exc)
            return None
        return self._parse(raw, str(self.path))

    def save(self, session: dict[str, Any]) -> None:
        """Atomically overwrite the on-disk snapshot."""
        if not is_valid_session(session):
            raise ValueError("Refusing to save an incomplete session snapshot")
        atomic_write_json(self.path, session)
        logger.info("Saved session snapshot. cookies={} path={}", len(session["cookies"]), self.path)

    def discard(self) -> None:
        """Quarantine a snapshot that turned out to be logged out."""
        if not self.path.exists():
            if self.inline_json:
                logger.warning("Inline NOTE_SESSION_JSON appears stale; update the environment variable")
            return
        stale_path = self.path.with_name(self.path.name + ".stale")
        try:
            os.replace(self.path, stale_path)
            logger.warning("Quarantined stale session snapshot to {}", stale_path)
        except OSError as exc:
            logger.error("Failed quarantining stale session {}: {}", self.path, exc)
