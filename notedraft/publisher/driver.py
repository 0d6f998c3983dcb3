"""Thin async boundary between the engine and a live Playwright page.

In-page scripts here only extract data or perform one primitive action; every
decision about what the data means lives in the engine and `fields`.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

from loguru import logger
from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from notedraft.publisher.fields import FieldCandidate

FIELD_MARKER_ATTR = "data-notedraft-field"

COLLECT_FIELDS_JS = """
(marker) => {
  const nodes = document.querySelectorAll(
    'input, textarea, [contenteditable="true"], [role="textbox"]'
  );
  const skipTypes = new Set(['hidden', 'password', 'checkbox', 'radio', 'file', 'search', 'submit', 'button']);
  const rows = [];
  let index = 0;
  for (const el of nodes) {
    if (el.tagName === 'INPUT' && skipTypes.has((el.type || '').toLowerCase())) continue;
    // Nested editables belong to their outer editor root.
    if (el.parentElement && el.parentElement.closest('[contenteditable="true"]')) continue;
    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    el.setAttribute(marker, String(index));
    rows.push({
      index,
      tag: el.tagName.toLowerCase(),
      role: el.getAttribute('role') || '',
      contenteditable: el.isContentEditable,
      placeholder: el.getAttribute('placeholder') || el.getAttribute('data-placeholder') || '',
      aria_label: el.getAttribute('aria-label') || '',
      name: el.getAttribute('name') || '',
      id: el.id || '',
      class_name: String(el.className || '').slice(0, 200),
      x: rect.x, y: rect.y + window.scrollY, width: rect.width, height: rect.height,
      visible: style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 0 && rect.height > 0,
    });
    index += 1;
  }
  return rows;
}
"""

FIELD_TEXT_LENGTH_JS = """
(el) => {
  if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) return el.value.length;
  return (el.innerText || el.textContent || '').replace(/\\n$/, '').length;
}
"""

DOM_INSERT_JS = """
(el, text) => {
  el.focus();
  if (el instanceof HTMLInputElement || el instanceof HTMLTextAreaElement) {
    const proto = Object.getPrototypeOf(el);
    const desc = Object.getOwnPropertyDescriptor(proto, 'value');
    const next = el.value + text;
    if (desc && typeof desc.set === 'function') desc.set.call(el, next); else el.value = next;
  } else if (!document.execCommand('insertText', false, text)) {
    el.append(document.createTextNode(text));
  }
  el.dispatchEvent(new InputEvent('input', { bubbles: true, data: text, inputType: 'insertText' }));
  el.dispatchEvent(new Event('change', { bubbles: true }));
}
"""

REMOVE_OVERLAYS_JS = """
(selectors) => {
  let removed = 0;
  for (const css of selectors) {
    for (const el of document.querySelectorAll(css)) { el.remove(); removed += 1; }
  }
  return removed;
}
"""


class PageDriver:
    """Primitive page operations used by the editor automation engine."""

    def __init__(self, context: BrowserContext, page: Page):
        self.context = context
        self.page = page

    @property
    def url(self) -> str:
        try:
            return self.page.url
        except PlaywrightError:
            return ""

    async def goto(self, url: str, wait_until: str = "domcontentloaded") -> bool:
        """Navigate; a timeout or aborted navigation is reported, not raised."""
        try:
            await self.page.goto(url, wait_until=wait_until)
            return True
        except PlaywrightError as exc:
            logger.warning("Navigation to '{}' did not complete cleanly: {}", url, exc)
            return False

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def node_count(self) -> int:
        try:
            return int(await self.page.evaluate("() => document.querySelectorAll('*').length"))
        except PlaywrightError:
            return 0

    async def body_contains(self, hints: list[str]) -> bool:
        try:
            text = await self.page.evaluate("() => document.body ? document.body.innerText : ''")
        except PlaywrightError:
            return False
        return any(hint in (text or "") for hint in hints)

    async def first_visible(self, selectors: list[str], timeout_ms: int = 800) -> str | None:
        for selector in selectors:
            locator = self.page.locator(selector).first
            try:
                if await locator.count() > 0 and await locator.is_visible(timeout=timeout_ms):
                    return selector
            except PlaywrightError:
                continue
        return None

    async def wait_for_any(self, selectors: list[str], timeout_s: float, interval_ms: int = 500) -> str | None:
        deadline = time.monotonic() + timeout_s
        while True:
            selector = await self.first_visible(selectors, timeout_ms=300)
            if selector or time.monotonic() >= deadline:
                return selector
            await self.page.wait_for_timeout(interval_ms)

    async def click_first(self, selectors: list[str], timeout_ms: int = 3000) -> str | None:
        selector = await self.first_visible(selectors, timeout_ms=min(timeout_ms, 1500))
        if not selector:
            return None
        try:
            await self.page.locator(selector).first.click(timeout=timeout_ms)
            return selector
        except PlaywrightError as exc:
            logger.warning("Click on '{}' failed: {}", selector, exc)
            return None

    async def fill_first(self, selectors: list[str], value: str, timeout_ms: int = 15_000) -> str | None:
        selector = await self.wait_for_any(selectors, timeout_s=timeout_ms / 1000)
        if not selector:
            return None
        await self.page.locator(selector).first.fill(value, timeout=timeout_ms)
        return selector

    async def click_away(self) -> None:
        """Click an empty corner and press Escape, closing most blocking popovers."""
        try:
            await self.page.mouse.click(5, 5)
            await self.page.keyboard.press("Escape")
        except PlaywrightError as exc:
            logger.debug("click-away failed: {}", exc)

    async def reload(self) -> None:
        try:
            await self.page.reload(wait_until="domcontentloaded")
        except PlaywrightError as exc:
            logger.warning("Reload did not complete cleanly: {}", exc)

    async def renavigate(self, url: str) -> None:
        """Replace the tab with a fresh one and load `url` there."""
        old_page = self.page
        self.page = await self.context.new_page()
        try:
            await old_page.close()
        except PlaywrightError:
            pass
        await self.goto(url, wait_until="load")

    async def click_dismiss_affordances(self, labels: list[str], aria_labels: list[str]) -> int:
        clicked = 0
        # Exact text only: a substring match would hit editor buttons such as "Booking".
        candidates = [f'button:text-is("{label}")' for label in labels]
        candidates += [f'[role="button"]:text-is("{label}")' for label in labels]
        candidates += [f'[aria-label="{label}"]' for label in aria_labels]
        for selector in candidates:
            locator = self.page.locator(selector)
            try:
                count = min(await locator.count(), 5)
                for position in range(count):
                    item = locator.nth(position)
                    if not await item.is_visible(timeout=200):
                        continue
                    await item.click(timeout=1200)
                    clicked += 1
            except PlaywrightError:
                continue
        return clicked

    async def remove_overlays(self, selectors: list[str]) -> int:
        return int(await self.page.evaluate(REMOVE_OVERLAYS_JS, selectors))

    async def collect_field_candidates(self) -> list[FieldCandidate]:
        rows: list[dict[str, Any]] = await self.page.evaluate(COLLECT_FIELDS_JS, FIELD_MARKER_ATTR)
        return [FieldCandidate.from_dict(row) for row in rows]

    def _field(self, index: int):
        return self.page.locator(f'[{FIELD_MARKER_ATTR}="{index}"]').first

    async def focus_field(self, index: int) -> None:
        field = self._field(index)
        await field.scroll_into_view_if_needed(timeout=5000)
        await field.click(timeout=5000)
        await field.focus()

    async def field_text_length(self, index: int) -> int:
        return int(await self._field(index).evaluate(FIELD_TEXT_LENGTH_JS))

    async def insert_text_native(self, text: str) -> None:
        await self.page.keyboard.insert_text(text)

    async def insert_text_dom(self, index: int, text: str) -> None:
        await self._field(index).evaluate(DOM_INSERT_JS, text)

    async def viewport_height(self) -> float:
        size = self.page.viewport_size
        return float(size["height"]) if size else 900.0

    async def screenshot(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=str(path), full_page=True)
        return path

    async def storage_state(self) -> dict[str, Any]:
        return await self.context.storage_state()
