"""Acquire a Playwright browser context with the device profile and cached session applied."""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator

from loguru import logger
from playwright.async_api import async_playwright

from notedraft.publisher.driver import PageDriver
from notedraft.publisher.profile import EngineProfile
from notedraft.store.session import is_valid_session

DEFAULT_CHROME_PATHS = (
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--start-maximized",
]

# Masks the properties that give away an automated Chromium.
STEALTH_SCRIPT_TEMPLATE = """
(() => {
  Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
  window.chrome = window.chrome || { runtime: {} };
  Object.defineProperty(navigator, 'languages', { get: () => %(languages)s });
  Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
  const query = window.navigator.permissions && window.navigator.permissions.query;
  if (query) {
    window.navigator.permissions.query = (parameters) =>
      parameters && parameters.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission })
        : query(parameters);
  }
})();
"""

LOCAL_STORAGE_SCRIPT_TEMPLATE = """
(() => {
  const entries = %(entries)s;
  const items = entries[window.location.origin];
  if (!items) return;
  for (const [name, value] of items) {
    try { window.localStorage.setItem(name, value); } catch (e) {}
  }
})();
"""


@dataclass(frozen=True)
class BrowserOptions:
    headless: bool = True
    ws_endpoint: str | None = None
    chrome_path: str | None = None
    slow_mo_ms: int = 0

    @property
    def is_remote(self) -> bool:
        return bool(self.ws_endpoint)


def _resolve_chrome_path(explicit: str | None) -> str | None:
    if explicit:
        return explicit if os.path.exists(explicit) else None
    return next((path for path in DEFAULT_CHROME_PATHS if os.path.exists(path)), None)


def stealth_script(languages: tuple[str, ...]) -> str:
    return STEALTH_SCRIPT_TEMPLATE % {"languages": json.dumps(list(languages))}


def local_storage_script(session: dict[str, Any]) -> str | None:
    entries: dict[str, list[list[str]]] = {}
    for origin in session.get("origins", []):
        items = [
            [str(item.get("name")), str(item.get("value"))]
            for item in origin.get("localStorage", [])
            if isinstance(item, dict) and item.get("name") is not None
        ]
        if items:
            entries[origin["origin"]] = items
    if not entries:
        return None
    return LOCAL_STORAGE_SCRIPT_TEMPLATE % {"entries": json.dumps(entries, ensure_ascii=False)}


async def restore_session(context, session: dict[str, Any] | None) -> bool:
    """Inject cookies and local storage from a cached session; missing/invalid is a no-op."""
    if not session or not is_valid_session(session):
        logger.info("No usable cached session; continuing without one")
        return False
    if session["cookies"]:
        await context.add_cookies(session["cookies"])
    script = local_storage_script(session)
    if script:
        await context.add_init_script(script)
    logger.info(
        "Restored session. cookies={} origins={}",
        len(session["cookies"]),
        len(session.get("origins", [])),
    )
    return True


class BrowserSessionManager:
    """Hands out one isolated browser context per job and always tears it down."""

    def __init__(self, profile: EngineProfile, options: BrowserOptions):
        self.profile = profile
        self.options = options

    @asynccontextmanager
    async def acquire(self, session: dict[str, Any] | None = None) -> AsyncIterator[PageDriver]:
        async with async_playwright() as playwright:
            if self.options.is_remote:
                logger.info("Connecting to remote browser over CDP")
                browser = await playwright.chromium.connect_over_cdp(
                    self.options.ws_endpoint, timeout=self.profile.default_timeout_ms + 5000
                )
            else:
                chrome_path = _resolve_chrome_path(self.options.chrome_path)
                logger.info(
                    "Launching local browser. headless={} executable='{}'",
                    self.options.headless,
                    chrome_path or "bundled chromium",
                )
                browser = await playwright.chromium.launch(
                    headless=self.options.headless,
                    executable_path=chrome_path,
                    args=LAUNCH_ARGS,
                    slow_mo=self.options.slow_mo_ms or None,
                )
            try:
                context = await browser.new_context(**self.profile.device.context_options())
                try:
                    await context.add_init_script(stealth_script(self.profile.device.languages))
                    context.set_default_timeout(self.profile.default_timeout_ms)
                    context.set_default_navigation_timeout(self.profile.default_timeout_ms)
                    await restore_session(context, session)
                    page = await context.new_page()
                    yield PageDriver(context, page)
                finally:
                    await _close_quietly(context, "context")
            finally:
                await _close_quietly(browser, "browser")


async def _close_quietly(resource, label: str) -> None:
    try:
        await resource.close()
    except Exception as exc:
        logger.warning("Failed closing {}: {}", label, exc)
