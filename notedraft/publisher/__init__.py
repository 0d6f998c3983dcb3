"""note.com draft publishing: editor automation engine and API fast path."""

from notedraft.publisher.engine import EditorAutomationEngine, PublishRequest, Stage
from notedraft.publisher.errors import PublishError, SafetyError
from notedraft.publisher.profile import PROFILES, EngineProfile, get_profile

__all__ = [
    "PROFILES",
    "EditorAutomationEngine",
    "EngineProfile",
    "PublishError",
    "PublishRequest",
    "SafetyError",
    "Stage",
    "get_profile",
]
