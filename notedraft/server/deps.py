"""FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from notedraft.config import get_settings
from notedraft.service import Services


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Process-wide service container; tests replace it via ``dependency_overrides``."""
    return Services.from_settings(get_settings())
