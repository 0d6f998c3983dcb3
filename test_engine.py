import asyncio
import json
import threading
from pathlib import Path

import pytest

from conftest import SESSION, fast_profile
from notedraft.progress import ProgressNotifier
from notedraft.publisher.engine import PublishRequest
from notedraft.publisher.errors import (
    AuthenticationError,
    DraftNotPersistedError,
    FieldDiscoveryError,
    HydrationError,
    SafetyError,
    StageTimeoutError,
)
from notedraft.publisher.fields import FieldCandidate
from notedraft.store.jobs import Job, JobStatus, new_job_id
from notedraft.store.settings import DevSettings


def new_job(job_store) -> Job:
    return job_store.create(Job(job_id=new_job_id(), title="Hello"))


def request(**overrides) -> PublishRequest:
    values = dict(title="Hello", body="# Hello\n\nworld of drafts\n\n- one\n- two")
    values.update(overrides)
    return PublishRequest(**values)


@pytest.mark.anyio
async def test_cached_session_produces_draft(make_engine, job_store, session_store, fake_driver, browser_factory, drain):
    session_store.save(SESSION)
    fake_driver.logged_in = True
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    note_url = await make_engine().run(job, request(), DevSettings(), notifier)

    assert note_url == fake_driver.editor_url
    assert browser_factory.sessions == [SESSION]
    assert browser_factory.closed == 1
    assert "submit" not in fake_driver.calls
    assert fake_driver.texts[1] == "Hello"
    assert "world of drafts" in fake_driver.texts[2]
    assert "・one" in fake_driver.texts[2]

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.SUCCESS
    assert stored.note_url == note_url
    assert stored.attempt_count == 1
    assert stored.finished_at and stored.posted_at

    events = await drain(notifier)
    steps = [event["last_step"] for event in events if "last_step" in event]
    assert any(step.startswith("S03: authentication - session valid") for step in steps)
    assert any("via native" in step for step in steps)
    assert steps[-1] == "S99: complete"
    assert events[-1] == {"status": "success", "job_id": job.job_id, "note_url": note_url}


@pytest.mark.anyio
async def test_stage_order_is_persisted_before_each_event(make_engine, job_store, fake_driver, drain):
    fake_driver.logged_in = True
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    await make_engine().run(job, request(), DevSettings(), notifier)

    codes = []
    for event in await drain(notifier):
        step = event.get("last_step", "")
        if step[:1] == "S" and step[:3] not in codes:
            codes.append(step[:3])
    assert codes == ["S00", "S01", "S02", "S03", "S04", "S05", "S06", "S07", "S08", "S09", "S99"]


@pytest.mark.anyio
async def test_missing_credentials_fail_authentication(make_engine, job_store, fake_driver, drain):
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    with pytest.raises(AuthenticationError) as excinfo:
        await make_engine().run(job, request(), DevSettings(), notifier)

    assert excinfo.value.code == "AUTH_MISSING_CREDENTIALS"
    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == "AUTH_MISSING_CREDENTIALS"
    assert stored.last_step.startswith("S03")
    assert "Credentials missing" in stored.error_message
    events = await drain(notifier)
    assert "Credentials missing" in events[-1]["error"]


@pytest.mark.anyio
async def test_login_saves_session(make_engine, job_store, session_store, fake_driver):
    job = new_job(job_store)

    await make_engine().run(
        job, request(email="me@example.com", password="secret"), DevSettings(), ProgressNotifier(job.job_id)
    )

    assert fake_driver.fills["input#email"] == "me@example.com"
    assert fake_driver.fills["input#password"] == "secret"
    assert session_store.load() == SESSION


@pytest.mark.anyio
async def test_default_credentials_used_when_request_has_none(make_engine, job_store, fake_driver):
    job = new_job(job_store)
    engine = make_engine(default_email="env@example.com", default_password="env-secret")

    await engine.run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    assert fake_driver.fills["input#email"] == "env@example.com"


@pytest.mark.anyio
async def test_rejected_session_is_quarantined(make_engine, job_store, session_store, fake_driver):
    session_store.save(SESSION)
    job = new_job(job_store)

    await make_engine().run(
        job, request(email="me@example.com", password="secret"), DevSettings(), ProgressNotifier(job.job_id)
    )

    stale = session_store.path.with_name(session_store.path.name + ".stale")
    assert stale.exists()
    assert session_store.path.exists()


@pytest.mark.anyio
async def test_failed_login_is_fatal(make_engine, job_store, fake_driver):
    fake_driver.login_succeeds = False
    job = new_job(job_store)

    with pytest.raises(AuthenticationError) as excinfo:
        await make_engine().run(
            job, request(email="me@example.com", password="wrong"), DevSettings(), ProgressNotifier(job.job_id)
        )

    assert excinfo.value.code == "AUTH_LOGIN_TIMEOUT"


@pytest.mark.anyio
async def test_hydration_timeout_escalates_and_screenshots(make_engine, job_store, fake_driver, tmp_path: Path, drain):
    fake_driver.logged_in = True
    fake_driver.hydrate_after = 99
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    with pytest.raises(HydrationError):
        await make_engine().run(job, request(), DevSettings(), notifier)

    assert "reload" in fake_driver.calls
    assert "renavigate" in fake_driver.calls
    assert fake_driver.calls.index("reload") < fake_driver.calls.index("renavigate")

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == "HYDRATION_TIMEOUT"
    assert stored.last_step.startswith("S05")
    assert stored.error_screenshot == str(tmp_path / "artifacts" / f"{job.job_id}-S05.png")
    assert Path(stored.error_screenshot).exists()
    events = await drain(notifier)
    assert "hydration timeout" in events[-1]["error"]


@pytest.mark.anyio
async def test_kill_switch_never_opens_browser(make_engine, job_store, browser_factory):
    job = new_job(job_store)

    with pytest.raises(SafetyError) as excinfo:
        await make_engine().run(job, request(), DevSettings(auto_post_enabled=False), ProgressNotifier(job.job_id))

    assert excinfo.value.code == "KILL_SWITCH"
    assert browser_factory.opened == 0
    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.last_step.startswith("S00")
    assert stored.error_screenshot is None


@pytest.mark.anyio
async def test_draft_without_persistent_url_fails(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    fake_driver.editor_url = "https://editor.note.com/edit"
    job = new_job(job_store)

    with pytest.raises(DraftNotPersistedError):
        await make_engine().run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == "DRAFT_NOT_PERSISTED"
    assert stored.last_step.startswith("S09")
    assert stored.warnings


@pytest.mark.anyio
async def test_save_confirmation_timeout_is_only_a_warning(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    fake_driver.save_button = False
    job = new_job(job_store)

    note_url = await make_engine().run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.SUCCESS
    assert note_url == fake_driver.editor_url
    assert any("save confirmation" in warning for warning in stored.warnings)


@pytest.mark.anyio
async def test_direct_navigation_when_ui_entry_missing(make_engine, job_store, fake_driver, drain):
    fake_driver.logged_in = True
    fake_driver.ui_entry = False
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    await make_engine().run(job, request(), DevSettings(), notifier)

    assert "goto https://note.com/notes/new" in fake_driver.calls
    steps = [event.get("last_step", "") for event in await drain(notifier)]
    assert "S04: editor entry - UI path unavailable, direct navigation" in steps


@pytest.mark.anyio
async def test_dom_fallback_when_native_insert_is_ignored(make_engine, job_store, fake_driver, drain):
    fake_driver.logged_in = True
    fake_driver.native_ok = {2: False}
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    await make_engine().run(job, request(), DevSettings(), notifier)

    assert "world of drafts" in fake_driver.texts[2]
    steps = [event.get("last_step", "") for event in await drain(notifier)]
    assert "S08: content injection - title via native, body via dom-event" in steps


@pytest.mark.anyio
async def test_missing_body_field_is_named(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    fake_driver.fields = [FieldCandidate(index=0, tag="textarea", placeholder="タイトル", y=100, width=600, height=50)]
    job = new_job(job_store)

    with pytest.raises(FieldDiscoveryError) as excinfo:
        await make_engine().run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    assert excinfo.value.missing == ["body"]
    assert job_store.get(job.job_id).error_code == "FIELD_NOT_FOUND"


@pytest.mark.anyio
async def test_stage_timeout_is_fatal(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    fake_driver.hang_hydration = True
    job = new_job(job_store)
    profile = fast_profile(stage_timeouts={"hydration": 0.05})

    with pytest.raises(StageTimeoutError):
        await make_engine(profile).run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    stored = job_store.get(job.job_id)
    assert stored.error_code == "STAGE_TIMEOUT"
    assert stored.last_step.startswith("S05")


@pytest.mark.anyio
async def test_cancellation_marks_job_and_closes_browser(make_engine, job_store, fake_driver, browser_factory, drain):
    fake_driver.logged_in = True
    fake_driver.hang_hydration = True
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)

    task = asyncio.ensure_future(make_engine().run(job, request(), DevSettings(), notifier))
    await asyncio.wait_for(fake_driver.hydration_started.wait(), timeout=2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == "CANCELLED"
    assert browser_factory.closed == 1
    assert all("error" not in event for event in await drain(notifier))


@pytest.mark.anyio
async def test_rate_limits_only_warn(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    earlier = new_job(job_store)
    earlier.start()
    job_store.update(earlier)
    job = new_job(job_store)

    settings = DevSettings(max_jobs_per_day=0, min_interval_seconds=3600)
    await make_engine().run(job, request(), settings, ProgressNotifier(job.job_id))

    stored = job_store.get(job.job_id)
    assert stored.status is JobStatus.SUCCESS
    assert any("MAX_JOBS_PER_DAY" in warning for warning in stored.warnings)
    assert any("MIN_INTERVAL_SECONDS" in warning for warning in stored.warnings)


@pytest.mark.anyio
async def test_visual_debug_reports_debugger_url(make_engine, job_store, fake_driver, drain):
    fake_driver.logged_in = True
    job = new_job(job_store)
    notifier = ProgressNotifier(job.job_id)
    engine = make_engine(debugger_url="https://chrome.browserless.io/debugger?token=t")

    await engine.run(job, request(visual_debug=True), DevSettings(), notifier)

    steps = [event.get("last_step", "") for event in await drain(notifier)]
    assert "S01: browser init - VISUAL DEBUG URL https://chrome.browserless.io/debugger?token=t" in steps


def test_job_record_is_plain_json(job_store):
    job = new_job(job_store)
    raw = json.loads((job_store.directory / f"{job.job_id}.json").read_text(encoding="utf-8"))
    assert raw["status"] == "pending"
    assert raw["last_step"] == "Initializing..."


@pytest.mark.anyio
async def test_job_writes_run_off_the_event_loop(make_engine, job_store, fake_driver):
    fake_driver.logged_in = True
    job = new_job(job_store)
    writer_threads: list[int] = []
    persist = job_store.update

    def recording_update(record):
        writer_threads.append(threading.get_ident())
        return persist(record)

    job_store.update = recording_update
    await make_engine().run(job, request(), DevSettings(), ProgressNotifier(job.job_id))

    assert writer_threads
    assert threading.get_ident() not in writer_threads
    assert job_store.get(job.job_id).status is JobStatus.SUCCESS
