"""Wires stores, browser and engine together for the HTTP API and the CLI."""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from notedraft.config import Settings
from notedraft.progress import ProgressNotifier
from notedraft.publisher.api_draft import ApiDraftClient
from notedraft.publisher.browser import BrowserOptions, BrowserSessionManager
from notedraft.publisher.engine import BrowserFactory, EditorAutomationEngine, PublishRequest
from notedraft.publisher.errors import PublishError, SafetyError
from notedraft.publisher.profile import EngineProfile, get_profile
from notedraft.store.jobs import Job, JobStore, new_job_id
from notedraft.store.session import SessionStore
from notedraft.store.settings import SettingsStore

DEVELOPMENT_MODE = "development"
VISUAL_DEBUG_SLOW_MO_MS = 250


def require_development_mode(mode: str | None) -> None:
    """Every endpoint refuses to act unless the caller says it is in development mode."""
    if mode != DEVELOPMENT_MODE:
        raise SafetyError(f"Forbidden: invalid mode '{mode}'", code="MODE_FORBIDDEN")


def local_browser_factory(settings: Settings, profile: EngineProfile) -> BrowserFactory:
    def factory(session: dict[str, Any] | None, visual_debug: bool) -> AbstractAsyncContextManager:
        options = BrowserOptions(
            headless=settings.headless and not visual_debug,
            ws_endpoint=settings.browser_ws_endpoint,
            chrome_path=settings.chrome_path,
            slow_mo_ms=VISUAL_DEBUG_SLOW_MO_MS if visual_debug else 0,
        )
        return BrowserSessionManager(profile, options).acquire(session)

    return factory


@dataclass
class Services:
    settings: Settings
    profile: EngineProfile
    job_store: JobStore
    session_store: SessionStore
    settings_store: SettingsStore
    browser_factory: BrowserFactory
    api_transport: httpx.AsyncBaseTransport | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> Services:
        profile = get_profile(settings.engine_profile)
        logger.info("Using engine profile {} ({})", profile.name, profile.version)
        return cls(
            settings=settings,
            profile=profile,
            job_store=JobStore(settings.jobs_dir),
            session_store=SessionStore(settings.session_file, inline_json=settings.session_json),
            settings_store=SettingsStore(settings.settings_file),
            browser_factory=local_browser_factory(settings, profile),
        )

    def build_engine(self) -> EditorAutomationEngine:
        return EditorAutomationEngine(
            self.profile,
            self.job_store,
            self.session_store,
            self.browser_factory,
            artifact_dir=self.settings.artifact_dir,
            default_email=self.settings.note_email,
            default_password=self.settings.note_password,
            debugger_url=self.settings.browser_debugger_url,
        )

    def notifier_for(self, job: Job) -> ProgressNotifier:
        return ProgressNotifier(job.job_id, heartbeat_seconds=self.settings.heartbeat_seconds)

    def create_job(self, request: PublishRequest) -> Job:
        job = Job(
            job_id=new_job_id(),
            request_id=request.request_id or "unknown",
            article_id=request.article_id or "unknown",
            mode=request.mode,
            title=request.title,
            tags=list(request.tags),
            scheduled_at=request.scheduled_at,
        )
        return self.job_store.create(job)

    async def run_browser_job(self, job: Job, request: PublishRequest, notifier: ProgressNotifier) -> str:
        # Developer settings are re-read per job so a kill switch flip applies to the next run.
        dev_settings = self.settings_store.load()
        return await self.build_engine().run(job, request, dev_settings, notifier)

    async def run_api_job(
        self,
        job: Job,
        request: PublishRequest,
        notifier: ProgressNotifier,
        image_url: str | None = None,
    ) -> str:
        job.start()
        self.job_store.update(job)

        def report(step: str) -> None:
            job.advance(step)
            self.job_store.update(job)
            notifier.step(step)

        try:
            if not self.settings_store.load().auto_post_enabled:
                raise SafetyError("Automation disabled: AUTO_POST_ENABLED is false", code="KILL_SWITCH")
            client = ApiDraftClient(self.session_store.load(), transport=self.api_transport, report=report)
            result = await client.create_draft(request.title, request.body, image_url=image_url)
        except asyncio.CancelledError:
            job.fail("CANCELLED", "Job cancelled before completion")
            self.job_store.update(job)
            notifier.detach()
            raise
        except PublishError as exc:
            job.fail(exc.code, str(exc))
            self.job_store.update(job)
            notifier.fail(str(exc))
            logger.error("[{}] API draft failed ({}): {}", job.job_id, exc.code, exc)
            raise
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            job.fail("UNEXPECTED", message)
            self.job_store.update(job)
            notifier.fail(message)
            raise PublishError(message, code="UNEXPECTED") from exc

        for warning in result.warnings:
            job.warn(warning)
        job.succeed(result.note_url)
        self.job_store.update(job)
        notifier.succeed(result.note_url)
        logger.info("[{}] API draft saved at {}", job.job_id, result.note_url)
        return result.note_url
