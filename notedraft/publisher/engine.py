"""Staged editor automation: authenticate, open the editor, type the draft, confirm the save.

Every stage persists its step to the job store before emitting it on the
progress stream, so a crash after stage N leaves the job showing stage N.
"""

from __future__ import annotations

import asyncio
import random
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, AsyncContextManager, Awaitable, Callable

from loguru import logger

from notedraft.progress import ProgressNotifier
from notedraft.publisher import selectors
from notedraft.publisher.errors import (
    AuthenticationError,
    DraftNotPersistedError,
    FieldDiscoveryError,
    HydrationError,
    InjectionError,
    NavigationError,
    PublishError,
    SafetyError,
    StageTimeoutError,
)
from notedraft.publisher.fields import FieldCandidate, FieldSelection, pick_fields
from notedraft.publisher.markdown import chunk_text, markdown_to_editor_text
from notedraft.publisher.profile import EngineProfile
from notedraft.publisher.retry import RescueAction
from notedraft.store.jobs import Job, JobStore
from notedraft.store.session import SessionStore
from notedraft.store.settings import DevSettings

SAVED_HINTS = ["保存しました", "下書きを保存", "Saved"]
CHUNK_REPORT_EVERY = 20

BrowserFactory = Callable[[dict[str, Any] | None, bool], AsyncContextManager[Any]]


class Stage(Enum):
    PRECHECK = ("S00", "precheck")
    BROWSER_INIT = ("S01", "browser init")
    NAVIGATE = ("S02", "navigate home")
    AUTHENTICATION = ("S03", "authentication")
    EDITOR_ENTRY = ("S04", "editor entry")
    HYDRATION = ("S05", "editor hydration")
    OVERLAYS = ("S06", "overlay dismissal")
    FIELDS = ("S07", "field discovery")
    INJECTION = ("S08", "content injection")
    SAVE = ("S09", "save")
    COMPLETE = ("S99", "complete")

    def __init__(self, code: str, label: str):
        self.code = code
        self.label = label

    @property
    def timeout_key(self) -> str:
        return self.name.lower()

    def describe(self, detail: str = "") -> str:
        text = f"{self.code}: {self.label}"
        return f"{text} - {detail}" if detail else text


@dataclass(slots=True)
class PublishRequest:
    title: str
    body: str
    mode: str = "development"
    tags: list[str] = field(default_factory=list)
    scheduled_at: str | None = None
    email: str | None = None
    password: str | None = None
    visual_debug: bool = False
    request_id: str | None = None
    article_id: str | None = None


@dataclass
class _Run:
    job: Job
    request: PublishRequest
    settings: DevSettings
    notifier: ProgressNotifier
    deadline: float
    stage: Stage = Stage.PRECHECK
    session: dict[str, Any] | None = None
    driver: Any = None

    def remaining(self) -> float:
        return self.deadline - time.monotonic()


class EditorAutomationEngine:
    """One parameterized engine; behaviour differences live in `EngineProfile`."""

    def __init__(
        self,
        profile: EngineProfile,
        job_store: JobStore,
        session_store: SessionStore,
        browser_factory: BrowserFactory,
        *,
        artifact_dir: Path,
        default_email: str | None = None,
        default_password: str | None = None,
        debugger_url: str | None = None,
        rng: random.Random | None = None,
    ):
        self.profile = profile
        self.job_store = job_store
        self.session_store = session_store
        self.browser_factory = browser_factory
        self.artifact_dir = artifact_dir
        self.default_email = default_email
        self.default_password = default_password
        self.debugger_url = debugger_url
        self.rng = rng or random.Random()

    # -- bookkeeping -------------------------------------------------------

    async def _report(self, run: _Run, step: str) -> None:
        run.job.advance(step)
        await self.job_store.save(run.job)
        run.notifier.step(step)
        logger.info("[{}] {}", run.job.job_id, step)

    async def _warn(self, run: _Run, message: str) -> None:
        run.job.warn(message)
        await self._report(run, run.stage.describe(f"WARNING {message}"))
        logger.warning("[{}] {}", run.job.job_id, message)

    async def _stage(
        self,
        run: _Run,
        stage: Stage,
        action: Callable[[_Run], Awaitable[Any]],
        *,
        fatal: bool = True,
    ) -> Any:
        run.stage = stage
        await self._report(run, stage.describe())
        remaining = run.remaining()
        if remaining <= 0:
            raise StageTimeoutError(f"Hard timeout reached at stage: {stage.describe()}", stage=stage.describe())
        timeout = min(self.profile.stage_timeout(stage.timeout_key), remaining)
        try:
            return await asyncio.wait_for(action(run), timeout=timeout)
        except asyncio.TimeoutError:
            error = StageTimeoutError(f"{stage.describe()} timed out after {timeout:.0f}s", stage=stage.describe())
            if fatal:
                raise error from None
            logger.warning("[{}] non-fatal stage timed out: {}", run.job.job_id, error)
        except Exception as exc:
            if fatal:
                raise
            logger.warning("[{}] non-fatal stage {} failed: {}", run.job.job_id, stage.describe(), exc)
        return None

    # -- entry point -------------------------------------------------------

    async def run(self, job: Job, request: PublishRequest, settings: DevSettings, notifier: ProgressNotifier) -> str:
        """Drive one job to a terminal state and return the draft URL.

        Fatal errors are recorded on the job, streamed as the terminal error
        event and re-raised as `PublishError`.
        """
        run = _Run(
            job=job,
            request=request,
            settings=settings,
            notifier=notifier,
            deadline=time.monotonic() + self.profile.hard_timeout_s,
        )
        job.start()
        await self.job_store.save(job)
        notifier.step(f"Job started: {job.job_id} (engine {self.profile.version})")

        try:
            async with AsyncExitStack() as stack:
                try:
                    note_url = await self._execute(run, stack)
                except Exception:
                    screenshot = await self._capture_screenshot(run)
                    run.job.error_screenshot = screenshot
                    raise
        except asyncio.CancelledError:
            await self._record_failure(run, "CANCELLED", "Job cancelled before completion")
            notifier.detach()
            raise
        except PublishError as exc:
            await self._record_failure(run, exc.code, str(exc))
            notifier.fail(str(exc))
            raise
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            await self._record_failure(run, "UNEXPECTED", message)
            notifier.fail(message)
            raise PublishError(message, code="UNEXPECTED", stage=run.stage.describe()) from exc

        run.stage = Stage.COMPLETE
        await self._report(run, Stage.COMPLETE.describe())
        job.succeed(note_url)
        await self.job_store.save(job)
        notifier.succeed(note_url)
        logger.info("[{}] Draft saved at {}", job.job_id, note_url)
        return note_url

    async def _record_failure(self, run: _Run, code: str, message: str) -> None:
        run.job.fail(
            code,
            message,
            step=run.stage.describe("failed"),
            screenshot=run.job.error_screenshot,
            note_url=run.driver.url if run.driver is not None else None,
        )
        await self.job_store.save(run.job)
        logger.error("[{}] {} failed ({}): {}", run.job.job_id, run.stage.describe(), code, message)

    async def _capture_screenshot(self, run: _Run) -> str | None:
        if run.driver is None:
            return None
        path = self.artifact_dir / f"{run.job.job_id}-{run.stage.code}.png"
        try:
            await run.driver.screenshot(path)
        except Exception as exc:
            logger.warning("[{}] Failed saving failure screenshot: {}", run.job.job_id, exc)
            return None
        logger.info("[{}] Saved failure screenshot {}", run.job.job_id, path)
        return str(path)

    async def _execute(self, run: _Run, stack: AsyncExitStack) -> str:
        await self._stage(run, Stage.PRECHECK, self._precheck)

        run.session = self.session_store.load()
        visual_debug = run.settings.visual_debug or run.request.visual_debug

        async def _open_browser(current: _Run) -> None:
            if visual_debug and self.debugger_url:
                await self._report(current, Stage.BROWSER_INIT.describe(f"VISUAL DEBUG URL {self.debugger_url}"))
            current.driver = await stack.enter_async_context(self.browser_factory(current.session, visual_debug))

        await self._stage(run, Stage.BROWSER_INIT, _open_browser)
        await self._stage(run, Stage.NAVIGATE, self._navigate_home)
        await self._stage(run, Stage.AUTHENTICATION, self._authenticate)
        await self._stage(run, Stage.EDITOR_ENTRY, self._enter_editor)
        await self._stage(run, Stage.HYDRATION, self._wait_for_hydration)
        await self._stage(run, Stage.OVERLAYS, self._dismiss_overlays, fatal=False)
        selection = await self._stage(run, Stage.FIELDS, self._discover_fields)

        async def _inject(current: _Run) -> None:
            await self._inject_content(current, selection)

        await self._stage(run, Stage.INJECTION, _inject)
        return await self._stage(run, Stage.SAVE, self._save)

    # -- stages ------------------------------------------------------------

    async def _precheck(self, run: _Run) -> None:
        if not run.settings.auto_post_enabled:
            raise SafetyError("Automation disabled: AUTO_POST_ENABLED is false", code="KILL_SWITCH")
        if run.request.mode != "development":
            raise SafetyError(f"Invalid mode: {run.request.mode}", code="MODE_FORBIDDEN")

        midnight = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        todays_jobs = self.job_store.count_since(midnight)
        if todays_jobs > run.settings.max_jobs_per_day:
            await self._warn(run, f"daily job count {todays_jobs} exceeds MAX_JOBS_PER_DAY={run.settings.max_jobs_per_day}")

        previous = self.job_store.latest_started_at(exclude=run.job.job_id)
        if previous and run.job.started_at:
            gap = (datetime.fromisoformat(run.job.started_at) - datetime.fromisoformat(previous)).total_seconds()
            if 0 <= gap < run.settings.min_interval_seconds:
                await self._warn(
                    run,
                    f"only {gap:.0f}s since previous job (MIN_INTERVAL_SECONDS={run.settings.min_interval_seconds})",
                )

    async def _navigate_home(self, run: _Run) -> None:
        # SPA navigation events are unreliable; inspect the DOM whatever goto reports.
        if not await run.driver.goto(self.profile.home_url):
            await self._report(run, Stage.NAVIGATE.describe("navigation timed out, inspecting page anyway"))
        await run.driver.wait(self.profile.navigation_settle_ms)

    async def _is_logged_in(self, run: _Run) -> bool:
        driver = run.driver
        if await driver.first_visible(selectors.LOGGED_IN_SELECTORS):
            return True
        if "/login" in driver.url:
            return False
        return not await driver.first_visible(selectors.LOGGED_OUT_SELECTORS)

    async def _authenticate(self, run: _Run) -> None:
        driver = run.driver
        if await self._is_logged_in(run):
            await self._report(run, Stage.AUTHENTICATION.describe("session valid"))
            return

        if run.session is not None:
            self.session_store.discard()
            await self._report(run, Stage.AUTHENTICATION.describe("cached session rejected"))

        email = run.request.email or self.default_email
        password = run.request.password or self.default_password
        if not email or not password:
            raise AuthenticationError(
                "Credentials missing: not logged in and no email/password supplied",
                code="AUTH_MISSING_CREDENTIALS",
            )

        await self._report(run, Stage.AUTHENTICATION.describe("login required"))
        await driver.goto(self.profile.login_url)
        if not await driver.fill_first(selectors.LOGIN_EMAIL_SELECTORS, email):
            raise AuthenticationError("Login form not found (email field)", code="AUTH_FORM_NOT_FOUND")
        if not await driver.fill_first(selectors.LOGIN_PASSWORD_SELECTORS, password):
            raise AuthenticationError("Login form not found (password field)", code="AUTH_FORM_NOT_FOUND")
        if not await driver.click_first(selectors.LOGIN_SUBMIT_SELECTORS):
            raise AuthenticationError("Login submit button not found", code="AUTH_FORM_NOT_FOUND")

        marker = await driver.wait_for_any(selectors.LOGGED_IN_SELECTORS, timeout_s=self.profile.login_marker_timeout_s)
        if not marker:
            raise AuthenticationError(
                f"Login not confirmed within {self.profile.login_marker_timeout_s:.0f}s",
                code="AUTH_LOGIN_TIMEOUT",
            )

        self.session_store.save(await driver.storage_state())
        await self._report(run, Stage.AUTHENTICATION.describe("login verified, session saved"))

    async def _enter_editor(self, run: _Run) -> None:
        driver = run.driver
        timeout_ms = self.profile.ui_affordance_timeout_ms

        if await driver.click_first(selectors.NEW_POST_SELECTORS, timeout_ms=timeout_ms):
            if await driver.click_first(selectors.TEXT_POST_TYPE_SELECTORS, timeout_ms=timeout_ms):
                await driver.wait(self.profile.navigation_settle_ms)
                if self.profile.is_editor_url(driver.url):
                    await self._report(run, Stage.EDITOR_ENTRY.describe("opened via UI"))
                    return

        await self._report(run, Stage.EDITOR_ENTRY.describe("UI path unavailable, direct navigation"))
        await driver.goto(self.profile.compose_url)
        await driver.wait(self.profile.navigation_settle_ms)
        if not self.profile.is_editor_url(driver.url):
            raise NavigationError(
                f"Editor entry failed via UI and direct URL (current: {driver.url or 'blank'})",
                code="EDITOR_ENTRY_FAILED",
            )

    async def _rescue(self, run: _Run, action: RescueAction) -> None:
        driver = run.driver
        if action is RescueAction.DISMISS:
            await driver.click_away()
        elif action is RescueAction.RELOAD:
            await driver.reload()
        elif action is RescueAction.RENAVIGATE:
            await driver.renavigate(self.profile.compose_url)

    async def _wait_for_hydration(self, run: _Run) -> None:
        driver = run.driver
        policy = self.profile.hydration
        threshold = self.profile.hydration_node_threshold
        nodes = 0
        for round_index in policy.rounds():
            nodes = await driver.node_count()
            blocked = await driver.body_contains(selectors.BLOCKED_PAGE_HINTS)
            flag = " BLOCKED" if blocked else ""
            await self._report(
                run,
                Stage.HYDRATION.describe(f"round {round_index + 1}/{policy.max_attempts} nodes {nodes}{flag}"),
            )
            if nodes > threshold and not blocked and not self.profile.is_placeholder_url(driver.url):
                await self._report(run, Stage.HYDRATION.describe("hydration done"))
                return
            if policy.is_last_round(round_index):
                break

            action = policy.action_for(round_index)
            if blocked and action is RescueAction.WAIT:
                action = RescueAction.RENAVIGATE
            if action is not RescueAction.WAIT:
                await self._report(run, Stage.HYDRATION.describe(f"rescue {action.value}"))
                await self._rescue(run, action)
            await driver.wait(policy.delay_ms(round_index))

        raise HydrationError(
            f"Editor hydration timeout after {policy.max_attempts} rounds "
            f"(nodes={nodes}, threshold={threshold}, url={driver.url})"
        )

    async def _dismiss_overlays(self, run: _Run) -> None:
        driver = run.driver
        clicked = 0
        for _ in range(self.profile.overlay_passes):
            try:
                hits = await driver.click_dismiss_affordances(selectors.DISMISS_LABELS, selectors.DISMISS_ARIA_LABELS)
            except Exception as exc:
                logger.debug("Dismiss pass failed: {}", exc)
                break
            clicked += hits
            if not hits:
                break
            await driver.wait(300)

        removed = 0
        try:
            removed = await driver.remove_overlays(selectors.OVERLAY_ROOT_SELECTORS)
        except Exception as exc:
            logger.debug("Overlay removal failed: {}", exc)
        await self._report(run, Stage.OVERLAYS.describe(f"clicked {clicked}, removed {removed}"))

    async def _discover_fields(self, run: _Run) -> FieldSelection:
        driver = run.driver
        candidates = await driver.collect_field_candidates()
        selection = pick_fields(candidates, await driver.viewport_height())
        if selection.missing:
            logger.debug("Field candidates: {}", candidates)
            raise FieldDiscoveryError(selection.missing, stage=Stage.FIELDS.describe())
        await self._report(
            run,
            Stage.FIELDS.describe(
                f"title #{selection.title.index} <{selection.title.tag}>, "
                f"body #{selection.body.index} <{selection.body.tag}>"
            ),
        )
        return selection

    async def _inject_content(self, run: _Run, selection: FieldSelection) -> None:
        title_path = await self._type_into(run, selection.title, run.request.title, self.profile.title_chunk_size, "title")
        body_text = markdown_to_editor_text(run.request.body)
        body_path = await self._type_into(run, selection.body, body_text, self.profile.body_chunk_size, "body")
        await self._report(run, Stage.INJECTION.describe(f"title via {title_path}, body via {body_path}"))

    async def _type_into(self, run: _Run, target: FieldCandidate, text: str, chunk_size: int, label: str) -> str:
        """Type `text` in paced chunks; return which insertion path(s) were used."""
        driver = run.driver
        await driver.focus_field(target.index)
        chunks = chunk_text(text, chunk_size)
        paths: set[str] = set()
        low, high = self.profile.pacing_ms

        for number, chunk in enumerate(chunks, start=1):
            if not chunk.strip():
                await driver.insert_text_native(chunk)
                paths.add("native")
            else:
                before = await driver.field_text_length(target.index)
                await driver.insert_text_native(chunk)
                if await driver.field_text_length(target.index) > before:
                    paths.add("native")
                else:
                    logger.debug("Native insert ignored by {} field at chunk {}; using DOM events", label, number)
                    await driver.insert_text_dom(target.index, chunk)
                    if await driver.field_text_length(target.index) <= before:
                        raise InjectionError(
                            f"{label} field rejected input at chunk {number}/{len(chunks)}",
                            stage=Stage.INJECTION.describe(),
                        )
                    paths.add("dom-event")

            if number % CHUNK_REPORT_EVERY == 0:
                await self._report(run, Stage.INJECTION.describe(f"{label} {number}/{len(chunks)} chunks"))
            if high > 0:
                await driver.wait(self.rng.randint(low, high))

        return "+".join(sorted(paths)) or "empty"

    async def _save(self, run: _Run) -> str:
        driver = run.driver
        if await driver.click_first(selectors.SAVE_DRAFT_SELECTORS, timeout_ms=self.profile.ui_affordance_timeout_ms):
            await self._report(run, Stage.SAVE.describe("save clicked"))
        else:
            await self._report(run, Stage.SAVE.describe("no save button, waiting for autosave"))
            await driver.wait(self.profile.autosave_wait_ms)

        deadline = time.monotonic() + self.profile.save_poll_timeout_s
        confirmed = False
        while True:
            if self.profile.is_persistent_draft_url(driver.url) and await driver.body_contains(SAVED_HINTS):
                confirmed = True
                break
            if time.monotonic() >= deadline:
                break
            await driver.wait(self.profile.save_poll_interval_ms)

        url = driver.url
        if not confirmed:
            await self._warn(run, f"save confirmation not observed within {self.profile.save_poll_timeout_s:.0f}s")
        if not self.profile.is_persistent_draft_url(url):
            raise DraftNotPersistedError(f"Draft did not acquire a persistent URL (current: {url or 'blank'})")
        await self._report(run, Stage.SAVE.describe(f"draft url {url}"))
        return url
