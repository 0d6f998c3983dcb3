"""Markdown renderings for the note.com editor (typed plain text) and draft API (HTML)."""

from __future__ import annotations

import html
import re

H1_PATTERN = re.compile(r"^\s*#\s+(.+?)\s*$", re.MULTILINE)
HEADING_PATTERN = re.compile(r"^\s*#{1,6}\s+(.+?)\s*$")
HORIZONTAL_RULE_PATTERN = re.compile(r"^\s*([-*_]\s*){3,}$")
IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
BOLD_PATTERN = re.compile(r"\*\*(.+?)\*\*")

# Tables of contents written by the LLM duplicate the one note.com generates.
GENERATED_TOC_PATTERNS = [
    re.compile(r"^> ?【?目次】?.*$", re.MULTILINE),
    re.compile(r"^## ?目次.*$", re.MULTILINE),
    re.compile(r"^\*\*目次\*\*.*$", re.MULTILINE),
]
CODE_BLOCK_PATTERN = re.compile(r"```(\w+)?\n([\s\S]*?)```")
POINT_LINE_PATTERN = re.compile(r"^\*\*(Point|ポイント|Check|チェック)[：:](.+)\*\*$", re.MULTILINE)
BARE_URL_LINE_PATTERN = re.compile(r"^(http[^ \n]+)$", re.MULTILINE)
BLOCK_START_PATTERN = re.compile(r"^(<h[1-6]|<pre|<figure|<ul|<hr|<li|<blockquote|<div)")
EMPTY_BODY_HTML = "<p>（本文なし）</p>"


def extract_title(markdown_text: str, fallback: str = "") -> str:
    """First H1 of the document, else `fallback`."""
    match = H1_PATTERN.search(markdown_text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return fallback.strip() or "Untitled"


def remove_leading_h1(markdown_text: str) -> str:
    """Drop an H1 only when it is the first non-blank line; later H1s are content."""
    lines = markdown_text.split("\n")
    for index, line in enumerate(lines):
        if not line.strip():
            continue
        if H1_PATTERN.fullmatch(line):
            del lines[index]
        break
    return "\n".join(lines)


def _inline_to_text(line: str) -> str:
    line = IMAGE_PATTERN.sub(lambda m: f"[image: {m.group(1).strip() or 'image'}] ({m.group(2).strip()})", line)
    line = LINK_PATTERN.sub(lambda m: f"{m.group(1).strip()} ({m.group(2).strip()})", line)
    line = BOLD_PATTERN.sub(r"\1", line)
    line = line.replace("`", "")
    return HTML_TAG_PATTERN.sub("", line)


def markdown_to_editor_text(markdown_text: str) -> str:
    """Plain text that keeps the document's shape when typed into a rich-text editor."""
    lines: list[str] = []
    in_code_block = False

    normalized = markdown_text.replace("\r\n", "\n").replace("\r", "\n")
    for raw_line in remove_leading_h1(normalized).split("\n"):
        line = raw_line.rstrip()
        stripped = line.strip()

        if stripped.startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            lines.append(line)
            continue
        if HORIZONTAL_RULE_PATTERN.match(stripped):
            lines.append("----------")
            continue
        heading = HEADING_PATTERN.match(line)
        if heading:
            lines.append(f"【{heading.group(1).strip()}】")
            continue

        line = re.sub(r"^\s*>\s?", "", line)
        line = re.sub(r"^\s*[-*+]\s+", "・", line)
        lines.append(_inline_to_text(line).strip())

    compact: list[str] = []
    previous_blank = False
    for line in lines:
        if not line.strip():
            if not previous_blank:
                compact.append("")
            previous_blank = True
            continue
        previous_blank = False
        compact.append(line)
    return "\n".join(compact).strip()


def markdown_to_html(markdown_text: str) -> str:
    """HTML body accepted by the note.com draft API."""
    text = remove_leading_h1(markdown_text.replace("\r\n", "\n"))
    for pattern in GENERATED_TOC_PATTERNS:
        text = pattern.sub("", text)

    text = CODE_BLOCK_PATTERN.sub(
        lambda m: f'<pre data-lang="{m.group(1) or ""}"><code>{html.escape(m.group(2), quote=False)}</code></pre>',
        text,
    )
    text = re.sub(r"\n(## .+)", r"\n\n---\n\n\1", text)
    text = re.sub(r"^---$", "<hr>", text, flags=re.MULTILINE)
    text = POINT_LINE_PATTERN.sub(r"<blockquote><strong>\1: \2</strong></blockquote>", text)
    text = BARE_URL_LINE_PATTERN.sub(r'<a href="\1">\1</a>', text)

    # note.com reserves H1 for the title and renders H2 oversized, so body H1 and H2 both become h3.
    toc: list[str] = []

    def _h2(match: re.Match) -> str:
        toc.append(f"<li>{match.group(1)}</li>")
        return f"<h3>{match.group(1)}</h3>"

    text = re.sub(r"^#{1,2} (.+)$", _h2, text, flags=re.MULTILINE)
    text = re.sub(r"^### (.+)$", r"<h4>\1</h4>", text, flags=re.MULTILINE)

    if toc:
        toc_html = f'<div class="toc"><strong>目次</strong><ul>{"".join(toc)}</ul></div><hr>'
        first_heading = text.find("<h3>")
        text = text[:first_heading] + toc_html + text[first_heading:]

    text = re.sub(r"^- (.+)$", r"<ul><li>\1</li></ul>", text, flags=re.MULTILINE)
    text = text.replace("</ul>\n<ul>", "")
    text = BOLD_PATTERN.sub(r"<strong>\1</strong>", text)
    text = IMAGE_PATTERN.sub(r'<figure><img src="\2" alt="\1"></figure>', text)
    text = LINK_PATTERN.sub(r'<a href="\2">\1</a>', text)
    text = re.sub(r"^> (.+)$", r"<blockquote>\1</blockquote>", text, flags=re.MULTILINE)

    paragraphs = []
    for block in text.split("\n\n"):
        block = block.strip()
        if not block:
            continue
        paragraphs.append(block if BLOCK_START_PATTERN.match(block) else f"<p>{block}</p>")
    return "\n".join(paragraphs) or EMPTY_BODY_HTML


def chunk_text(text: str, size: int) -> list[str]:
    """Split `text` into pieces of at most `size` characters."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [text[start : start + size] for start in range(0, len(text), size)]
