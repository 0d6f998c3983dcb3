"""Persistent state: jobs, cached session and developer settings."""

from notedraft.store.jobs import InvalidJobTransition, Job, JobStatus, JobStore, new_job_id
from notedraft.store.session import SessionStore, is_valid_session
from notedraft.store.settings import DevSettings, SettingsError, SettingsStore

__all__ = [
    "DevSettings",
    "InvalidJobTransition",
    "Job",
    "JobStatus",
    "JobStore",
    "SessionStore",
    "SettingsError",
    "SettingsStore",
    "is_valid_session",
    "new_job_id",
]
