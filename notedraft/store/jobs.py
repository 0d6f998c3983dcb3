"""Publishing job records and their file-backed store (one JSON file per job)."""

from __future__ import annotations

import asyncio
import json
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from loguru import logger

from notedraft.utils.helpers import atomic_write_json, ensure_dir, utc_now_iso

DEFAULT_LIST_LIMIT = 50


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILED)


ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING},
    JobStatus.RUNNING: {JobStatus.SUCCESS, JobStatus.FAILED},
    JobStatus.SUCCESS: set(),
    JobStatus.FAILED: set(),
}


class InvalidJobTransition(RuntimeError):
    """Raised on any status change outside pending -> running -> success|failed."""


def new_job_id() -> str:
    """Nanosecond timestamp plus a random suffix keeps ids unique across concurrent requests."""
    return f"job-{time.time_ns()}-{uuid.uuid4().hex[:6]}"


@dataclass(slots=True)
class Job:
    job_id: str
    request_id: str = "unknown"
    article_id: str = "unknown"
    mode: str = "development"
    title: str = ""
    tags: list[str] = field(default_factory=list)
    scheduled_at: str | None = None
    status: JobStatus = JobStatus.PENDING
    last_step: str = "Initializing..."
    attempt_count: int = 0
    created_at: str = field(default_factory=utc_now_iso)
    started_at: str | None = None
    finished_at: str | None = None
    posted_at: str | None = None
    note_url: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    error_screenshot: str | None = None
    warnings: list[str] = field(default_factory=list)

    def _transition(self, target: JobStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(f"{self.job_id}: {self.status.value} -> {target.value} is not allowed")
        self.status = target

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise InvalidJobTransition(f"{self.job_id} is {self.status.value}; terminal jobs are immutable")

    def start(self) -> None:
        self._transition(JobStatus.RUNNING)
        self.attempt_count += 1
        self.started_at = utc_now_iso()

    def advance(self, step: str) -> None:
        self._ensure_mutable()
        self.last_step = step

    def warn(self, message: str) -> None:
        self._ensure_mutable()
        self.warnings.append(message)

    def succeed(self, note_url: str) -> None:
        self._transition(JobStatus.SUCCESS)
        now = utc_now_iso()
        self.note_url = note_url
        self.posted_at = now
        self.finished_at = now

    def fail(
        self,
        error_code: str,
        error_message: str,
        *,
        step: str | None = None,
        screenshot: str | None = None,
        note_url: str | None = None,
    ) -> None:
        """Mark failed; the screenshot is attached in the same mutation as the status."""
        self._transition(JobStatus.FAILED)
        if step:
            self.last_step = step
        self.error_code = error_code
        self.error_message = error_message or error_code
        self.error_screenshot = screenshot
        if note_url:
            self.note_url = note_url
        self.finished_at = utc_now_iso()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["status"] = JobStatus(values.get("status", JobStatus.PENDING.value))
        return cls(**values)

    @property
    def sort_key(self) -> str:
        return self.started_at or self.created_at


class JobStore:
    """File-backed job log; every write replaces one job's file atomically.

    Storage errors never propagate: job visibility must not break the
    automation that is being observed.
    """

    def __init__(self, directory: Path):
        self.directory = directory
        self._lock = threading.Lock()

    def _path(self, job_id: str) -> Path:
        return self.directory / f"{job_id}.json"

    def _write(self, job: Job) -> None:
        try:
            with self._lock:
                ensure_dir(self.directory)
                atomic_write_json(self._path(job.job_id), job.to_dict())
        except OSError as exc:
            logger.error("Job save failed for {} (step='{}'): {}", job.job_id, job.last_step, exc)

    def create(self, job: Job) -> Job:
        self._write(job)
        logger.debug("Created job {} request_id={}", job.job_id, job.request_id)
        return job

    def update(self, job: Job) -> Job:
        self._write(job)
        return job

    async def save(self, job: Job) -> Job:
        """`update` on a worker thread so the fsync never stalls the event loop."""
        return await asyncio.to_thread(self.update, job)

    def _read(self, path: Path) -> Job | None:
        try:
            return Job.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Skipping unreadable job record {}: {}", path, exc)
            return None

    def get(self, job_id: str) -> Job | None:
        path = self._path(job_id)
        if not path.exists():
            return None
        return self._read(path)

    def all(self) -> list[Job]:
        try:
            paths = sorted(self.directory.glob("job-*.json"))
        except OSError as exc:
            logger.error("Failed listing jobs in {}: {}", self.directory, exc)
            return []
        jobs = []
        for path in paths:
            job = self._read(path)
            if job is not None:
                jobs.append(job)
        return jobs

    def list(self, limit: int = DEFAULT_LIST_LIMIT) -> list[Job]:
        """Most recent jobs first, by `started_at` (then `created_at`)."""
        if limit <= 0:
            return []
        jobs = self.all()
        jobs.sort(key=lambda job: job.sort_key, reverse=True)
        return jobs[:limit]

    def count_since(self, moment: datetime) -> int:
        threshold = moment.isoformat(timespec="milliseconds")
        return sum(1 for job in self.all() if job.created_at >= threshold)

    def latest_started_at(self, exclude: str | None = None) -> str | None:
        started = [job.started_at for job in self.all() if job.started_at and job.job_id != exclude]
        return max(started) if started else None
