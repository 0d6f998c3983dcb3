"""Process configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from notedraft.utils.helpers import parse_bool

SERVERLESS_DATA_DIR = Path("/tmp") / "notedraft"
LOCAL_DATA_DIR = Path.cwd() / ".notedraft"
BROWSERLESS_ENDPOINT = "wss://chrome.browserless.io?token={token}&--shm-size=2gb&stealth"
BROWSERLESS_DEBUGGER = "https://chrome.browserless.io/debugger?token={token}"


@dataclass(frozen=True)
class Settings:
    """Typed settings for one notedraft process."""

    environment: str
    serverless: bool
    data_dir: Path
    log_dir: Path
    log_level: str
    headless: bool
    chrome_path: str | None
    browser_ws_endpoint: str | None
    browser_debugger_url: str | None
    note_email: str | None
    note_password: str | None
    session_json: str | None
    engine_profile: str
    heartbeat_seconds: float

    @property
    def session_file(self) -> Path:
        return self.data_dir / "note-session.json"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "note-draft-jobs"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "note_settings.json"

    @property
    def artifact_dir(self) -> Path:
        return self.log_dir / "artifacts"


def _optional(name: str, *fallbacks: str) -> str | None:
    for key in (name, *fallbacks):
        raw = os.getenv(key)
        if raw and raw.strip():
            return raw.strip()
    return None


def is_serverless() -> bool:
    """Detect ephemeral sandboxes where only /tmp is writable."""
    return bool(os.getenv("VERCEL") or os.getenv("AWS_LAMBDA_FUNCTION_NAME"))


def load_settings() -> Settings:
    """Build settings from the current environment (uncached)."""
    serverless = is_serverless()
    data_dir_raw = _optional("NOTEDRAFT_DATA_DIR")
    if data_dir_raw:
        data_dir = Path(data_dir_raw).expanduser().resolve()
    else:
        data_dir = SERVERLESS_DATA_DIR if serverless else LOCAL_DATA_DIR

    log_dir_raw = _optional("NOTEDRAFT_LOG_DIR")
    log_dir = Path(log_dir_raw).expanduser().resolve() if log_dir_raw else data_dir / "logs"

    browserless_token = _optional("BROWSERLESS_TOKEN", "BROWSERLESS_API_KEY")
    ws_endpoint = _optional("NOTEDRAFT_BROWSER_WS_ENDPOINT")
    debugger_url = None
    if not ws_endpoint and browserless_token:
        ws_endpoint = BROWSERLESS_ENDPOINT.format(token=browserless_token)
        debugger_url = BROWSERLESS_DEBUGGER.format(token=browserless_token)

    return Settings(
        environment=os.getenv("NOTEDRAFT_ENV", "development").strip().lower(),
        serverless=serverless,
        data_dir=data_dir,
        log_dir=log_dir,
        log_level=os.getenv("NOTEDRAFT_LOG_LEVEL", "INFO").strip().upper(),
        headless=parse_bool(os.getenv("NOTEDRAFT_HEADLESS"), default=serverless),
        chrome_path=_optional("NOTEDRAFT_CHROME_PATH"),
        browser_ws_endpoint=ws_endpoint,
        browser_debugger_url=debugger_url,
        note_email=_optional("NOTE_EMAIL"),
        note_password=_optional("NOTE_PASSWORD"),
        session_json=_optional("NOTE_SESSION_JSON"),
        engine_profile=os.getenv("NOTEDRAFT_ENGINE_PROFILE", "stable").strip(),
        heartbeat_seconds=float(os.getenv("NOTEDRAFT_HEARTBEAT_SECONDS", "5")),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings once per process."""
    return load_settings()
