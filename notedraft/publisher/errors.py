"""Error taxonomy for the draft publisher."""

from __future__ import annotations


class PublishError(RuntimeError):
    """Base class for failures that end a publishing job."""

    code = "PUBLISH_FAILED"

    def __init__(self, message: str, *, code: str | None = None, stage: str | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.stage = stage


class SafetyError(PublishError):
    """Kill switch off or non-development mode. Never retried, no side effects."""

    code = "SAFETY_BLOCKED"


class AuthenticationError(PublishError):
    code = "AUTH_FAILED"


class NavigationError(PublishError):
    code = "NAVIGATION_FAILED"


class HydrationError(PublishError):
    code = "HYDRATION_TIMEOUT"


class FieldDiscoveryError(PublishError):
    code = "FIELD_NOT_FOUND"

    def __init__(self, missing: list[str], *, stage: str | None = None):
        self.missing = list(missing)
        super().__init__(f"Editor field(s) not found: {', '.join(self.missing)}", stage=stage)


class InjectionError(PublishError):
    code = "INJECTION_FAILED"


class DraftNotPersistedError(PublishError):
    code = "DRAFT_NOT_PERSISTED"


class StageTimeoutError(PublishError):
    code = "STAGE_TIMEOUT"


class ApiDraftError(PublishError):
    code = "API_DRAFT_FAILED"
