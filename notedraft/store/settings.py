"""Developer safety settings: compiled-in defaults merged with a persisted override file."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, ValidationError

from notedraft.utils.helpers import atomic_write_json


class SettingsError(ValueError):
    """Raised when a settings patch has unknown keys or wrongly-typed values."""


class DevSettings(BaseModel):
    """Process-wide safety switches read at the start of every job."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    auto_post_enabled: StrictBool = Field(default=True, alias="AUTO_POST_ENABLED")
    visual_debug: StrictBool = Field(default=False, alias="VISUAL_DEBUG")
    schedule_enabled: StrictBool = Field(default=False, alias="SCHEDULE_ENABLED")
    # Drafts only. Nothing in notedraft ever presses the public "publish" button.
    allow_publish: StrictBool = Field(default=False, alias="ALLOW_PUBLISH")
    max_jobs_per_day: StrictInt = Field(default=10, ge=0, alias="MAX_JOBS_PER_DAY")
    min_interval_seconds: StrictInt = Field(default=30, ge=0, alias="MIN_INTERVAL_SECONDS")

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


KNOWN_KEYS = frozenset(field.alias for field in DevSettings.model_fields.values())


class SettingsStore:
    """Read-merge-write store for `DevSettings`; last write wins."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def _read_overrides(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable settings override file {}: {}", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring settings override file {}: not a JSON object", self.path)
            return {}
        stale = set(raw) - KNOWN_KEYS
        if stale:
            logger.debug("Dropping unknown settings keys from override file: {}", sorted(stale))
        return {key: value for key, value in raw.items() if key in KNOWN_KEYS}

    def load(self) -> DevSettings:
        """Defaults merged with the override file; a bad file falls back to defaults."""
        overrides = self._read_overrides()
        try:
            return DevSettings.model_validate(overrides)
        except ValidationError as exc:
            logger.warning("Settings override file has invalid values, using defaults: {}", exc)
            return DevSettings()

    def update(self, patch: Mapping[str, Any]) -> DevSettings:
        """Shallow-merge `patch` over the current settings and persist the result."""
        with self._lock:
            merged = {**self.load().to_public(), **dict(patch)}
            try:
                updated = DevSettings.model_validate(merged)
            except ValidationError as exc:
                raise SettingsError(_describe_validation_error(exc)) from exc
            atomic_write_json(self.path, updated.to_public())
        logger.info("Developer settings updated: {}", dict(patch))
        return updated


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts) or "invalid settings"
