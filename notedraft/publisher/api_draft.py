"""Browserless fast path: create a note.com draft through its JSON API with cached cookies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import httpx
from loguru import logger

from notedraft.publisher.errors import ApiDraftError, AuthenticationError
from notedraft.publisher.markdown import markdown_to_html

NOTE_BASE_URL = "https://note.com"
API_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
XSRF_COOKIE_NAME = "XSRF-TOKEN"


@dataclass(slots=True)
class ApiDraftResult:
    note_url: str
    key: str
    note_id: int | None
    warnings: list[str]


def session_cookie_header(session: dict[str, Any]) -> str:
    return "; ".join(f"{cookie['name']}={cookie['value']}" for cookie in session.get("cookies", []))


def session_xsrf_token(session: dict[str, Any]) -> str | None:
    for cookie in session.get("cookies", []):
        if cookie.get("name") == XSRF_COOKIE_NAME:
            return cookie.get("value")
    return None


class ApiDraftClient:
    """Create-then-save drafts via ``/api/v1/text_notes``.

    `report` receives human-readable progress steps; the caller decides where
    they go (job store, progress stream).
    """

    def __init__(
        self,
        session: dict[str, Any] | None,
        *,
        base_url: str = NOTE_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
        report: Callable[[str], None] | None = None,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout
        self.report = report or (lambda step: None)

    def _headers(self) -> dict[str, str]:
        if not self.session or not self.session.get("cookies"):
            raise AuthenticationError(
                "Session not found: log in once through the browser flow or set NOTE_SESSION_JSON",
                code="AUTH_NO_SESSION",
            )
        headers = {
            "Content-Type": "application/json",
            "User-Agent": API_USER_AGENT,
            "Cookie": session_cookie_header(self.session),
            "Origin": self.base_url,
            "Referer": f"{self.base_url}/notes/new",
            "X-Requested-With": "XMLHttpRequest",
        }
        token = session_xsrf_token(self.session)
        if token:
            headers["X-XSRF-TOKEN"] = token
        return headers

    async def _check_login(self, client: httpx.AsyncClient) -> None:
        """Soft check: any failure here is logged and skipped."""
        try:
            response = await client.get("/api/v2/login/status")
        except httpx.HTTPError as exc:
            logger.warning("Login status check failed, skipping: {}", exc)
            self.report("API: login status skipped (error)")
            return
        if response.status_code >= 400:
            logger.warning("Login status check returned HTTP {}", response.status_code)
            return
        if "application/json" not in response.headers.get("content-type", ""):
            logger.warning("Login status check returned non-JSON")
            return
        user = ((response.json() or {}).get("data") or {}).get("user") or {}
        self.report(f"API: logged in as {user.get('nickname') or 'unknown'}")

    async def create_draft(self, title: str, body: str, image_url: str | None = None) -> ApiDraftResult:
        headers = self._headers()
        self.report("API: converting content")
        html_body = markdown_to_html(body)
        if image_url:
            # External images are fetched by note.com when the draft is saved.
            html_body = f'<figure><img src="{image_url}" alt="header_image"></figure>\n\n{html_body}'
            self.report("API: header image embedded")
        logger.debug("API draft: body_len={} html_len={}", len(body), len(html_body))

        warnings: list[str] = []
        async with httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=self.timeout, transport=self.transport
        ) as client:
            await self._check_login(client)

            self.report("API: creating draft")
            try:
                response = await client.post(
                    "/api/v1/text_notes", json={"body": html_body, "name": title, "template_key": None}
                )
            except httpx.HTTPError as exc:
                raise ApiDraftError(f"API create request failed: {exc}") from exc
            if response.status_code >= 400:
                raise ApiDraftError(f"API create error: HTTP {response.status_code} - {response.text[:200]}")

            data = (response.json() or {}).get("data") or {}
            key = data.get("key")
            note_id = data.get("id")

            if note_id:
                self.report("API: finalizing draft (draft_save)")
                payload = {
                    "body": html_body,
                    "body_length": len(html_body),
                    "name": title,
                    "index": False,
                    "is_lead_form": False,
                }
                try:
                    saved = await client.post(
                        "/api/v1/text_notes/draft_save",
                        params={"id": note_id, "is_temp_saved": "true"},
                        json=payload,
                    )
                except httpx.HTTPError as exc:
                    warnings.append(f"draft content save request failed: {exc}")
                else:
                    if saved.status_code >= 400:
                        warnings.append(f"draft content save failed (HTTP {saved.status_code})")
            elif key:
                self.report("API: no numeric id, falling back to legacy PUT")
                try:
                    saved = await client.put(
                        f"/api/v1/text_notes/{key}",
                        json={"body": html_body, "name": title, "status": "draft", "template_key": None},
                    )
                except httpx.HTTPError as exc:
                    warnings.append(f"legacy draft update request failed: {exc}")
                else:
                    if saved.status_code >= 400:
                        warnings.append(f"legacy draft update failed (HTTP {saved.status_code})")
            else:
                raise ApiDraftError("API create response carried neither id nor key")

        for warning in warnings:
            logger.warning("API draft: {}", warning)
            self.report(f"API: WARNING {warning}")

        if not key:
            # Without a key the draft has no URL anyone can open.
            raise ApiDraftError(f"API draft {note_id} has no retrievable key")
        note_url = f"{NOTE_BASE_URL}/notes/{key}"
        self.report(f"API: draft key {key}")
        return ApiDraftResult(note_url=note_url, key=key, note_id=note_id, warnings=warnings)
