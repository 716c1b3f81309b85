"""Tests for markdown parsing and PDF rendering."""

from datetime import date
from pathlib import Path
from unittest.mock import patch

import fitz  # type: ignore[import-untyped]
import pytest

from pustakam.config import ExportConfig
from pustakam.errors import ExportError, ExportInProgressError, FontLoadError
from pustakam.export import pdf
from pustakam.export.pdf import (
    CONTINUED_MARKER,
    PdfRenderer,
    normalize_text,
    parse_inline_markdown,
    parse_markdown,
    safe_pdf_filename,
    split_code_block,
)
from pustakam.models import BookModule, BookProject, BookSession, ModuleStatus


def _kinds(blocks: list[pdf.Block]) -> list[str]:
    return [b.kind for b in blocks]


def _project(final_book: str | None) -> BookProject:
    module = BookModule(
        roadmap_module_id="module_1",
        title="Variables",
        content="## Variables",
        word_count=2,
        status=ModuleStatus.COMPLETED,
    )
    return BookProject(
        title="Learning Rust: The Basics",
        goal="Learn Rust",
        session=BookSession(goal="Learn Rust"),
        modules=[module],
        final_book=final_book,
        total_words=2,
        provider="groq",
        model="llama-3.3-70b-versatile",
    )


def _pdf_text(path: Path) -> str:
    with fitz.open(str(path)) as doc:
        return "\n".join(page.get_text() for page in doc)


SAMPLE_BOOK = """# Learning Rust: The Basics

**Generated:** 2025-01-01

---

## Table of Contents

1. [Variables](#variables)
2. [Ownership](#ownership)

---

## Variables

Rust variables are **immutable** by default.

- first point
  - nested point
1. numbered step

> Remember this.

| Keyword | Meaning |
|---------|---------|
| let | binding |
| mut | mutable |

```rust
let x = 5;
```
"""


# ── Text handling ─────────────────────────────────────────────────────


class TestNormalizeText:
    def test_dashes_and_quotes(self) -> None:
        text = "a—b – c “q” ‘s’ wait…"
        assert normalize_text(text) == "a-b - c \"q\" 's' wait..."

    def test_ascii_untouched(self) -> None:
        assert normalize_text("plain - text") == "plain - text"


class TestInlineMarkdown:
    def test_bold_and_italic(self) -> None:
        assert parse_inline_markdown("**bold** and *it*") == "<b>bold</b> and <i>it</i>"

    def test_bold_italic(self) -> None:
        assert parse_inline_markdown("***both***") == "<b><i>both</i></b>"

    def test_strike(self) -> None:
        assert parse_inline_markdown("~~old~~") == "<strike>old</strike>"

    def test_html_is_escaped(self) -> None:
        assert parse_inline_markdown("a < b & c") == "a &lt; b &amp; c"

    def test_code_span_protected(self) -> None:
        result = parse_inline_markdown("use `**kwargs` here")
        assert '<font face="Courier" backColor="#edf2f7">**kwargs</font>' in result
        assert "<b>" not in result

    def test_link(self) -> None:
        result = parse_inline_markdown("[docs](https://doc.rust-lang.org)")
        assert result == '<link href="https://doc.rust-lang.org" color="#2b6cb0"><u>docs</u></link>'

    def test_snake_case_not_italic(self) -> None:
        assert parse_inline_markdown("snake_case_name") == "snake_case_name"


# ── Block parsing ─────────────────────────────────────────────────────


class TestSplitCodeBlock:
    def test_short_block_unchanged(self) -> None:
        assert split_code_block(["a", "b"], 40) == [["a", "b"]]

    def test_long_block_chunked(self) -> None:
        chunks = split_code_block([str(i) for i in range(90)], 40)
        assert [len(c) for c in chunks] == [40, 40, 10]


class TestParseMarkdown:
    def test_long_code_block_split_with_markers(self) -> None:
        code = "\n".join(f"line {i}" for i in range(90))
        blocks = parse_markdown(f"```python\n{code}\n```", code_block_max_lines=40)

        assert _kinds(blocks) == [
            "code", "continued", "page_break", "code", "continued", "page_break", "code",
        ]
        assert [len(b.lines) for b in blocks if b.kind == "code"] == [40, 40, 10]
        assert all(b.text == CONTINUED_MARKER for b in blocks if b.kind == "continued")
        assert blocks[0].language == "python"

    def test_table_of_contents_skipped(self) -> None:
        blocks = parse_markdown(SAMPLE_BOOK)
        texts = [b.text for b in blocks]
        assert "Table of Contents" not in texts
        assert not any("[Ownership]" in t for t in texts)
        assert blocks[0].kind == "heading"
        assert blocks[0].level == 1

    def test_sample_structure(self) -> None:
        blocks = parse_markdown(SAMPLE_BOOK)
        kinds = _kinds(blocks)
        assert "table" in kinds
        assert "quote" in kinds
        assert "code" in kinds

        bullets = [b for b in blocks if b.kind == "bullet"]
        assert [(b.text, b.level) for b in bullets] == [("first point", 0), ("nested point", 1)]
        numbered = [b for b in blocks if b.kind == "numbered"]
        assert numbered[0].number == 1

    def test_table_rows(self) -> None:
        blocks = parse_markdown(SAMPLE_BOOK)
        table = next(b for b in blocks if b.kind == "table")
        assert table.rows == [["Keyword", "Meaning"], ["let", "binding"], ["mut", "mutable"]]

    def test_table_stops_on_cell_count_mismatch(self) -> None:
        text = "| a | b |\n|---|---|\n| 1 | 2 |\n| 3 | 4 | 5 |\n"
        blocks = parse_markdown(text)
        assert blocks[0].rows == [["a", "b"], ["1", "2"]]

    def test_pipe_without_separator_is_paragraph(self) -> None:
        assert _kinds(parse_markdown("a | b\nnext line")) == ["paragraph"]

    def test_paragraph_lines_joined(self) -> None:
        blocks = parse_markdown("one\ntwo\n\nthree")
        assert [b.text for b in blocks] == ["one two", "three"]

    def test_heading_levels_capped_and_capitalized(self) -> None:
        blocks = parse_markdown("###### deep heading")
        assert blocks[0].level == 4
        assert blocks[0].text == "Deep heading"

    def test_rule(self) -> None:
        assert _kinds(parse_markdown("para\n\n***\n")) == ["paragraph", "rule"]

    def test_unterminated_fence_flushed(self) -> None:
        blocks = parse_markdown("```\nprint(1)")
        assert blocks[0].kind == "code"
        assert blocks[0].lines == ["print(1)"]

    def test_dashes_normalized(self) -> None:
        blocks = parse_markdown("range 1–5")
        assert blocks[0].text == "range 1-5"


class TestSafePdfFilename:
    def test_title_words_capitalized(self) -> None:
        assert safe_pdf_filename("learning rust: the basics!", date(2025, 1, 2)) == (
            "Learning_Rust_The_Basics_2025-01-02.pdf"
        )

    def test_fallback(self) -> None:
        assert safe_pdf_filename("???", date(2025, 1, 2)) == "Pustakam_Book_2025-01-02.pdf"

    def test_truncated(self) -> None:
        name = safe_pdf_filename("word " * 30, date(2025, 1, 2))
        assert len(name) == 50 + len("_2025-01-02.pdf")


# ── Rendering ─────────────────────────────────────────────────────────


class TestPdfRenderer:
    def test_render_writes_pdf(self, tmp_path: Path) -> None:
        path = PdfRenderer().render(_project(SAMPLE_BOOK), tmp_path, generated_on=date(2025, 1, 1))

        assert path == tmp_path / "Learning_Rust_The_Basics_2025-01-01.pdf"
        assert path.read_bytes().startswith(b"%PDF")
        text = _pdf_text(path)
        assert "Generated by Pustakam" in text
        assert "Variables" in text
        assert "IMPORTANT DISCLAIMER" in text
        assert "Groq" in text

    def test_long_code_block_spans_pages(self, tmp_path: Path) -> None:
        code = "\n".join(f"let value_{i} = {i};" for i in range(90))
        book = f"# Code\n\n```rust\n{code}\n```\n"

        path = PdfRenderer(ExportConfig(code_block_max_lines=40)).render(_project(book), tmp_path)

        text = _pdf_text(path)
        assert text.count("continued on next page") == 2
        assert "let value_89 = 89;" in text

    def test_no_final_book(self, tmp_path: Path) -> None:
        with pytest.raises(ExportError):
            PdfRenderer().render(_project(None), tmp_path)

    def test_concurrent_export_rejected(self, tmp_path: Path) -> None:
        assert pdf._export_lock.acquire(blocking=False)
        try:
            with pytest.raises(ExportInProgressError):
                PdfRenderer().render(_project(SAMPLE_BOOK), tmp_path)
        finally:
            pdf._export_lock.release()

    def test_lock_released_after_failure(self, tmp_path: Path) -> None:
        font = tmp_path / "broken.ttf"
        font.write_bytes(b"definitely not a font")
        renderer = PdfRenderer(ExportConfig(body_font_path=str(font)))

        with pytest.raises(FontLoadError):
            renderer.render(_project(SAMPLE_BOOK), tmp_path)
        assert pdf._export_lock.acquire(blocking=False)
        pdf._export_lock.release()

    def test_layout_failure_wrapped(self, tmp_path: Path) -> None:
        with patch.object(pdf.SimpleDocTemplate, "build", side_effect=RuntimeError("too tall")):
            with pytest.raises(ExportError, match="too tall"):
                PdfRenderer().render(_project(SAMPLE_BOOK), tmp_path)

    def test_missing_font_file(self, tmp_path: Path) -> None:
        renderer = PdfRenderer(ExportConfig(mono_font_path=str(tmp_path / "missing.ttf")))
        with pytest.raises(FontLoadError):
            renderer.render(_project(SAMPLE_BOOK), tmp_path)
