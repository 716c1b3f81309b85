"""Markdown file export."""

import logging
import re
from datetime import date
from pathlib import Path

from pustakam.errors import ExportError
from pustakam.models.book import BookProject

logger = logging.getLogger(__name__)


def safe_markdown_filename(title: str, on: date | None = None) -> str:
    """Build ``lower_case_title_YYYY-MM-DD_book.md`` from a book title."""
    on = on or date.today()
    cleaned = re.sub(r"[^a-z0-9\s-]", "", title, flags=re.IGNORECASE)
    name = re.sub(r"\s+", "_", cleaned).lower()[:50]
    return f"{name or 'pustakam'}_{on.isoformat()}_book.md"


def export_markdown(project: BookProject, output_dir: str | Path, on: date | None = None) -> Path:
    """Write ``project.final_book`` to a markdown file.

    Raises:
        ExportError: If the book has not been assembled or the file cannot be written.
    """
    if not project.final_book:
        raise ExportError(f"Book {project.id} has no assembled content to export")

    output_dir = Path(output_dir)
    path = output_dir / safe_markdown_filename(project.title, on)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(project.final_book, encoding="utf-8")
    except OSError as exc:
        raise ExportError(f"Could not write {path}: {exc}") from exc

    logger.info("Exported markdown for book %s to %s", project.id, path)
    return path
