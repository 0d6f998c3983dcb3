import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from notedraft.config import Settings
from notedraft.progress import ProgressNotifier
from notedraft.publisher import selectors
from notedraft.publisher.engine import EditorAutomationEngine
from notedraft.publisher.fields import FieldCandidate
from notedraft.publisher.profile import EngineProfile
from notedraft.publisher.retry import RescueAction, RetryPolicy
from notedraft.service import Services
from notedraft.store.jobs import JobStore
from notedraft.store.session import SessionStore
from notedraft.store.settings import SettingsStore

SESSION = {
    "cookies": [
        {"name": "_note_session_v5", "value": "abc", "domain": ".note.com", "path": "/"},
        {"name": "XSRF-TOKEN", "value": "xsrf-123", "domain": ".note.com", "path": "/"},
    ],
    "origins": [{"origin": "https://note.com", "localStorage": [{"name": "seen_tour", "value": "1"}]}],
}

DRAFT_URL = "https://editor.note.com/notes/nabc1234567/edit/"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def default_fields() -> list[FieldCandidate]:
    return [
        FieldCandidate(index=0, tag="input", placeholder="検索", y=10, width=200, height=30),
        FieldCandidate(index=1, tag="textarea", placeholder="記事タイトル", y=150, width=700, height=50),
        FieldCandidate(
            index=2,
            tag="div",
            role="textbox",
            contenteditable=True,
            class_name="ProseMirror",
            y=260,
            width=700,
            height=400,
        ),
    ]


class FakeDriver:
    """Scripted stand-in for `PageDriver` modelling the note.com happy path."""

    def __init__(self) -> None:
        self.url = "about:blank"
        self.logged_in = False
        self.login_succeeds = True
        self.login_form = True
        self.ui_entry = True
        self.editor_url = DRAFT_URL
        self.hydrate_after = 0
        self.hang_hydration = False
        self.blocked = False
        self.fields = default_fields()
        self.native_ok: dict[int, bool] = {}
        self.dom_ok = True
        self.save_button = True
        self.saved_hint = True
        self.texts: dict[int, str] = {}
        self.calls: list[str] = []
        self.fills: dict[str, str] = {}
        self.focused: int | None = None
        self.in_editor = False
        self.node_calls = 0
        self.saved = False
        self.hydration_started = asyncio.Event()

    def _enter_compose(self) -> None:
        self.in_editor = True
        self.url = "https://note.com/notes/new"

    async def goto(self, url: str, wait_until: str = "domcontentloaded") -> bool:
        self.calls.append(f"goto {url}")
        if url.rstrip("/").endswith("/notes/new"):
            self._enter_compose()
        else:
            self.url = url
        return True

    async def wait(self, ms: int) -> None:
        await asyncio.sleep(0)

    async def node_count(self) -> int:
        self.node_calls += 1
        if self.hang_hydration:
            self.hydration_started.set()
            await asyncio.Event().wait()
        if self.in_editor and self.node_calls > self.hydrate_after:
            self.url = self.editor_url
            return 800
        return 50

    async def body_contains(self, hints: list[str]) -> bool:
        if hints is selectors.BLOCKED_PAGE_HINTS:
            return self.blocked
        return self.saved and self.saved_hint

    async def first_visible(self, candidates: list[str], timeout_ms: int = 800) -> str | None:
        if candidates is selectors.LOGGED_IN_SELECTORS:
            return candidates[0] if self.logged_in else None
        if candidates is selectors.LOGGED_OUT_SELECTORS:
            return None if self.logged_in else candidates[0]
        return None

    async def wait_for_any(self, candidates: list[str], timeout_s: float, interval_ms: int = 500) -> str | None:
        if candidates is selectors.LOGGED_IN_SELECTORS:
            self.logged_in = self.logged_in or (self.login_succeeds and "submit" in self.calls)
        return await self.first_visible(candidates)

    async def click_first(self, candidates: list[str], timeout_ms: int = 3000) -> str | None:
        if candidates is selectors.LOGIN_SUBMIT_SELECTORS:
            self.calls.append("submit")
            return candidates[0]
        if candidates is selectors.NEW_POST_SELECTORS:
            return candidates[0] if self.ui_entry and self.logged_in else None
        if candidates is selectors.TEXT_POST_TYPE_SELECTORS:
            if not self.ui_entry:
                return None
            self.calls.append("ui-entry")
            self._enter_compose()
            return candidates[0]
        if candidates is selectors.SAVE_DRAFT_SELECTORS:
            if not self.save_button:
                return None
            self.calls.append("save")
            self.saved = True
            return candidates[0]
        return None

    async def fill_first(self, candidates: list[str], value: str, timeout_ms: int = 15_000) -> str | None:
        if not self.login_form:
            return None
        self.fills[candidates[0]] = value
        return candidates[0]

    async def click_away(self) -> None:
        self.calls.append("dismiss")

    async def reload(self) -> None:
        self.calls.append("reload")

    async def renavigate(self, url: str) -> None:
        self.calls.append("renavigate")
        await self.goto(url)

    async def click_dismiss_affordances(self, labels: list[str], aria_labels: list[str]) -> int:
        return 0

    async def remove_overlays(self, candidates: list[str]) -> int:
        return 1

    async def collect_field_candidates(self) -> list[FieldCandidate]:
        return list(self.fields)

    async def focus_field(self, index: int) -> None:
        self.focused = index

    async def field_text_length(self, index: int) -> int:
        return len(self.texts.get(index, ""))

    async def insert_text_native(self, text: str) -> None:
        if self.native_ok.get(self.focused, True):
            self.texts[self.focused] = self.texts.get(self.focused, "") + text

    async def insert_text_dom(self, index: int, text: str) -> None:
        if self.dom_ok:
            self.texts[index] = self.texts.get(index, "") + text

    async def viewport_height(self) -> float:
        return 900.0

    async def screenshot(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x89PNG fake")
        self.calls.append("screenshot")
        return path

    async def storage_state(self) -> dict:
        return json.loads(json.dumps(SESSION))


class BrowserFactory:
    def __init__(self, driver: FakeDriver):
        self.driver = driver
        self.sessions: list = []
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def __call__(self, session, visual_debug):
        self.sessions.append(session)
        self.opened += 1
        try:
            yield self.driver
        finally:
            self.closed += 1


def fast_profile(**overrides) -> EngineProfile:
    values = dict(
        name="test",
        version="test-1",
        navigation_settle_ms=0,
        login_marker_timeout_s=0.1,
        ui_affordance_timeout_ms=10,
        hydration=RetryPolicy(
            max_attempts=4,
            interval_ms=0,
            escalation={1: RescueAction.RELOAD, 2: RescueAction.RENAVIGATE},
        ),
        pacing_ms=(0, 0),
        autosave_wait_ms=0,
        save_poll_timeout_s=0.05,
        save_poll_interval_ms=0,
    )
    values.update(overrides)
    return EngineProfile(**values)


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def browser_factory(fake_driver: FakeDriver) -> BrowserFactory:
    return BrowserFactory(fake_driver)


@pytest.fixture
def job_store(tmp_path: Path) -> JobStore:
    return JobStore(tmp_path / "jobs")


@pytest.fixture
def session_store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "note-session.json")


@pytest.fixture
def make_engine(job_store, session_store, browser_factory, tmp_path):
    def _make(profile: EngineProfile | None = None, **kwargs) -> EditorAutomationEngine:
        return EditorAutomationEngine(
            profile or fast_profile(),
            job_store,
            session_store,
            browser_factory,
            artifact_dir=tmp_path / "artifacts",
            **kwargs,
        )

    return _make


@pytest.fixture
def drain():
    async def _drain(notifier: ProgressNotifier) -> list[dict]:
        return [json.loads(line) async for line in notifier.stream() if line.strip()]

    return _drain


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        serverless=False,
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        log_level="DEBUG",
        headless=True,
        chrome_path=None,
        browser_ws_endpoint=None,
        browser_debugger_url=None,
        note_email=None,
        note_password=None,
        session_json=None,
        engine_profile="stable",
        heartbeat_seconds=0.05,
    )


@pytest.fixture
def services(app_settings: Settings, browser_factory: BrowserFactory) -> Services:
    return Services(
        settings=app_settings,
        profile=fast_profile(),
        job_store=JobStore(app_settings.jobs_dir),
        session_store=SessionStore(app_settings.session_file),
        settings_store=SettingsStore(app_settings.settings_file),
        browser_factory=browser_factory,
    )
