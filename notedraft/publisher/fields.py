"""Pick the editor's title and body fields from extracted element descriptions.

The page driver only extracts plain data for every input-like element; all
scoring happens here so it can be tested without a browser.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

TITLE_HINTS = ("タイトル", "title", "headline", "見出し", "記事タイトル")
BODY_HINTS = ("本文", "ご自由にお書きください", "body", "content", "story", "write", "text")
BODY_CLASS_HINTS = ("prosemirror", "editor", "body", "content")

MIN_SCORE = 2.0


@dataclass(frozen=True)
class FieldCandidate:
    index: int
    tag: str
    role: str = ""
    contenteditable: bool = False
    placeholder: str = ""
    aria_label: str = ""
    name: str = ""
    element_id: str = ""
    class_name: str = ""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    visible: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldCandidate:
        return cls(
            index=int(data["index"]),
            tag=str(data.get("tag") or "").lower(),
            role=str(data.get("role") or "").lower(),
            contenteditable=bool(data.get("contenteditable")),
            placeholder=str(data.get("placeholder") or ""),
            aria_label=str(data.get("aria_label") or ""),
            name=str(data.get("name") or ""),
            element_id=str(data.get("id") or ""),
            class_name=str(data.get("class_name") or ""),
            x=float(data.get("x") or 0),
            y=float(data.get("y") or 0),
            width=float(data.get("width") or 0),
            height=float(data.get("height") or 0),
            visible=bool(data.get("visible", True)),
        )

    @property
    def hint_text(self) -> str:
        return " ".join([self.placeholder, self.aria_label, self.name, self.element_id]).lower()

    @property
    def is_single_line(self) -> bool:
        return self.tag == "input" or (self.tag == "textarea" and self.height <= 120)

    @property
    def is_multi_line(self) -> bool:
        return self.contenteditable or self.role == "textbox" or (self.tag == "textarea" and self.height > 120)


@dataclass(frozen=True)
class FieldSelection:
    title: FieldCandidate | None
    body: FieldCandidate | None

    @property
    def missing(self) -> list[str]:
        names = []
        if self.title is None:
            names.append("title")
        if self.body is None:
            names.append("body")
        return names


def _hint_score(text: str, vocabulary: Iterable[str]) -> float:
    return 3.0 if any(word.lower() in text for word in vocabulary) else 0.0


def score_title(candidate: FieldCandidate, viewport_height: float = 900.0) -> float:
    if not candidate.visible or candidate.width <= 0 or candidate.height <= 0:
        return float("-inf")
    score = _hint_score(candidate.hint_text, TITLE_HINTS)
    score -= _hint_score(candidate.hint_text, BODY_HINTS) / 2
    if candidate.tag == "textarea" or candidate.tag == "input":
        score += 1.0
    if candidate.height <= 120:
        score += 1.0
    elif candidate.height > 240:
        score -= 2.0
    # Titles sit in the top part of the compose surface.
    if candidate.y <= viewport_height * 0.4:
        score += 1.0
    return score


def score_body(candidate: FieldCandidate, viewport_height: float = 900.0) -> float:
    if not candidate.visible or candidate.width <= 0 or candidate.height <= 0:
        return float("-inf")
    score = _hint_score(candidate.hint_text, BODY_HINTS)
    score -= _hint_score(candidate.hint_text, TITLE_HINTS) / 2
    if candidate.contenteditable or candidate.role == "textbox":
        score += 2.0
    if any(hint in candidate.class_name.lower() for hint in BODY_CLASS_HINTS):
        score += 1.0
    if candidate.height >= 80:
        score += 1.0
    if candidate.is_single_line and candidate.tag == "input":
        score -= 2.0
    return score


def rank(
    candidates: Iterable[FieldCandidate], scorer, viewport_height: float = 900.0
) -> list[tuple[float, FieldCandidate]]:
    scored = [(scorer(candidate, viewport_height), candidate) for candidate in candidates]
    scored = [item for item in scored if item[0] >= MIN_SCORE]
    # Higher score first; ties go to the element nearer the top.
    scored.sort(key=lambda item: (-item[0], item[1].y, item[1].index))
    return scored


def pick_fields(candidates: Iterable[FieldCandidate], viewport_height: float = 900.0) -> FieldSelection:
    """Best title and best body candidate; the two are always distinct elements."""
    candidates = list(candidates)
    titles = rank(candidates, score_title, viewport_height)
    bodies = rank(candidates, score_body, viewport_height)

    title = titles[0][1] if titles else None
    body = next((candidate for _, candidate in bodies if title is None or candidate.index != title.index), None)

    # A body above the title means geometry contradicts the hints; prefer the lower one.
    if title is not None and body is not None and body.y < title.y:
        alternative = next(
            (candidate for _, candidate in bodies if candidate.index != title.index and candidate.y > title.y),
            None,
        )
        if alternative is not None:
            body = alternative
    return FieldSelection(title=title, body=body)
