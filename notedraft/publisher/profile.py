"""Versioned engine profiles: every timing constant the editor automation depends on."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping

from notedraft.publisher.retry import RescueAction, RetryPolicy


@dataclass(frozen=True)
class DeviceProfile:
    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    viewport_width: int = 1440
    viewport_height: int = 900
    locale: str = "ja-JP"
    timezone_id: str = "Asia/Tokyo"
    device_scale_factor: float = 2.0
    languages: tuple[str, ...] = ("ja-JP", "ja", "en-US", "en")

    def context_options(self) -> dict:
        return {
            "user_agent": self.user_agent,
            "viewport": {"width": self.viewport_width, "height": self.viewport_height},
            "locale": self.locale,
            "timezone_id": self.timezone_id,
            "device_scale_factor": self.device_scale_factor,
        }


def _default_hydration_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=12,
        interval_ms=2500,
        escalation={
            2: RescueAction.DISMISS,
            4: RescueAction.DISMISS,
            5: RescueAction.RELOAD,
            8: RescueAction.RELOAD,
            10: RescueAction.RENAVIGATE,
        },
    )


DEFAULT_STAGE_TIMEOUTS = {
    "browser_init": 45.0,
    "navigate": 40.0,
    "authentication": 90.0,
    "editor_entry": 60.0,
    "hydration": 120.0,
    "overlays": 20.0,
    "fields": 20.0,
    "injection": 600.0,
    "save": 45.0,
}


@dataclass(frozen=True)
class EngineProfile:
    name: str
    version: str
    home_url: str = "https://note.com/"
    login_url: str = "https://note.com/login"
    compose_url: str = "https://note.com/notes/new"
    placeholder_url_pattern: str = r"(?:/notes/new|editor\.note\.com/new)/?(?:[?#].*)?$"
    draft_url_pattern: str = r"/notes/n[0-9a-z]{6,}"
    default_timeout_ms: int = 30_000
    navigation_settle_ms: int = 3000
    login_marker_timeout_s: float = 35.0
    ui_affordance_timeout_ms: int = 4000
    hydration_node_threshold: int = 400
    hydration: RetryPolicy = field(default_factory=_default_hydration_policy)
    overlay_passes: int = 4
    title_chunk_size: int = 8
    body_chunk_size: int = 60
    pacing_ms: tuple[int, int] = (40, 180)
    autosave_wait_ms: int = 4000
    save_poll_timeout_s: float = 20.0
    save_poll_interval_ms: int = 1000
    hard_timeout_s: float = 900.0
    stage_timeouts: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_STAGE_TIMEOUTS))
    device: DeviceProfile = field(default_factory=DeviceProfile)

    def is_placeholder_url(self, url: str) -> bool:
        return bool(re.search(self.placeholder_url_pattern, url or ""))

    def is_persistent_draft_url(self, url: str) -> bool:
        return bool(url) and not self.is_placeholder_url(url) and bool(re.search(self.draft_url_pattern, url))

    def is_editor_url(self, url: str) -> bool:
        """Any compose surface: the placeholder, a persisted draft, or the editor host."""
        return self.is_placeholder_url(url) or self.is_persistent_draft_url(url) or "editor.note.com" in (url or "")

    def stage_timeout(self, stage_key: str) -> float:
        return float(self.stage_timeouts.get(stage_key, self.default_timeout_ms / 1000))


PROFILES: dict[str, EngineProfile] = {
    "stable": EngineProfile(name="stable", version="2026-01-stable"),
    # Remote browsers hydrate slower and need longer polling windows.
    "patient": EngineProfile(
        name="patient",
        version="2026-01-remote",
        default_timeout_ms=40_000,
        navigation_settle_ms=4000,
        hydration_node_threshold=300,
        hydration=RetryPolicy(
            max_attempts=15,
            interval_ms=5000,
            escalation={
                2: RescueAction.DISMISS,
                4: RescueAction.RELOAD,
                9: RescueAction.RELOAD,
                12: RescueAction.RENAVIGATE,
            },
        ),
        save_poll_timeout_s=30.0,
        hard_timeout_s=1200.0,
    ),
}


def get_profile(name: str) -> EngineProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown engine profile '{name}'. Known: {', '.join(sorted(PROFILES))}") from None
