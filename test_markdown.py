from pathlib import Path

import pytest

from notedraft.cli import build_payload
from notedraft.publisher.markdown import (
    EMPTY_BODY_HTML,
    chunk_text,
    extract_title,
    markdown_to_editor_text,
    markdown_to_html,
)


def test_extract_title_uses_first_h1() -> None:
    text = "# Main Article\n\n## Section\nBody"
    assert extract_title(text, "fallback") == "Main Article"


def test_extract_title_falls_back_to_filename() -> None:
    text = "## No H1 Here\nOnly content"
    assert extract_title(text, "article_001") == "article_001"


def test_markdown_to_editor_text_keeps_structure() -> None:
    markdown = """# Title

## Intro

![cover](https://img.test/cover.png)

- first **bold** point
- see [docs](https://docs.test)

```python
print("hello")
```



---
"""
    converted = markdown_to_editor_text(markdown)
    assert "Title" not in converted
    assert "【Intro】" in converted
    assert "[image: cover] (https://img.test/cover.png)" in converted
    assert "・first bold point" in converted
    assert "・see docs (https://docs.test)" in converted
    assert 'print("hello")' in converted
    assert "```" not in converted
    assert "\n\n\n" not in converted
    assert converted.endswith("----------")


def test_markdown_to_editor_text_keeps_h1_after_the_first_line() -> None:
    converted = markdown_to_editor_text("Intro paragraph\n\n# Part 2\n\nMore text")
    assert converted == "Intro paragraph\n\n【Part 2】\n\nMore text"


def test_markdown_to_editor_text_drops_only_a_leading_h1() -> None:
    converted = markdown_to_editor_text("\n# Title\n\n# Chapter\n\nText")
    assert converted == "【Chapter】\n\nText"


def test_markdown_to_html_shifts_headings_and_builds_toc() -> None:
    html = markdown_to_html("# Title\n\nLead text\n\n## First\n\nBody **strong**\n\n### Detail\n\n- a\n- b")
    assert "<h1" not in html
    assert "<h3>First</h3>" in html
    assert "<h4>Detail</h4>" in html
    assert '<div class="toc"><strong>目次</strong><ul><li>First</li></ul></div>' in html
    assert "<strong>strong</strong>" in html
    assert "<ul><li>a</li><li>b</li></ul>" in html
    assert "<p>Lead text</p>" in html


def test_markdown_to_html_strips_generated_toc_and_escapes_code() -> None:
    html = markdown_to_html("## 目次\n\n```js\nif (a < b) {}\n```")
    assert "目次" not in html
    assert '<pre data-lang="js"><code>if (a &lt; b) {}\n</code></pre>' in html


def test_markdown_to_html_empty_body() -> None:
    assert markdown_to_html("") == EMPTY_BODY_HTML


def test_chunk_text() -> None:
    assert chunk_text("abcdefghij", 4) == ["abcd", "efgh", "ij"]
    assert chunk_text("", 4) == []
    with pytest.raises(ValueError):
        chunk_text("abc", 0)


def test_build_payload_title_is_not_typed_into_the_body(tmp_path: Path) -> None:
    md_file = tmp_path / "article_001.md"
    md_file.write_text("# Article Title\n\n# Part 1\n\nBody line", encoding="utf-8")
    payload = build_payload(md_file)
    assert payload.title == "Article Title"
    typed = markdown_to_editor_text(payload.body)
    assert "Article Title" not in typed
    assert typed.startswith("【Part 1】")
    assert "Body line" in typed


def test_build_payload_rejects_empty_article(tmp_path: Path) -> None:
    md_file = tmp_path / "empty.md"
    md_file.write_text("# Only a title\n", encoding="utf-8")
    with pytest.raises(ValueError):
        build_payload(md_file)


def test_markdown_to_html_renders_later_h1_as_section() -> None:
    html = markdown_to_html("Intro\n\n# Part 2\n\nMore")
    assert "<h3>Part 2</h3>" in html
    assert "<li>Part 2</li>" in html
    assert "<p>More</p>" in html
