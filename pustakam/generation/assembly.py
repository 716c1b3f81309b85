"""Assembly of module contents into the final markdown book."""

import re
from datetime import date

from pustakam.models.book import BookModule

_ANCHOR_STRIP = re.compile(r"[^a-z0-9]+")


def heading_anchor(title: str) -> str:
    return _ANCHOR_STRIP.sub("-", title.lower())


def build_table_of_contents(modules: list[BookModule]) -> str:
    return "\n".join(
        f"{i}. [{m.title}](#{heading_anchor(m.title)})" for i, m in enumerate(modules, start=1)
    )


def build_gaps_notice(failed: list[BookModule]) -> str:
    titles = ", ".join(m.title for m in failed)
    return (
        f"> **Note:** {len(failed)} module(s) could not be generated and are "
        f"missing from this book: {titles}"
    )


def assemble_final_book(
    title: str,
    modules: list[BookModule],
    *,
    provider_name: str,
    model: str | None,
    generated_on: date | None = None,
    failed: list[BookModule] | None = None,
    introduction: str | None = None,
    summary: str | None = None,
    glossary: str | None = None,
) -> str:
    """Build the final book text.

    Args:
        title: Book title.
        modules: Completed modules in roadmap order.
        provider_name: Display name of the provider used.
        model: Model id used.
        generated_on: Date printed in the header; defaults to today.
        failed: Modules left out because they failed; listed in a notice.
        introduction: Optional introduction section body.
        summary: Optional summary section body.
        glossary: Optional glossary section body.

    Returns:
        The complete markdown document.
    """
    generated_on = generated_on or date.today()
    total_words = sum(m.word_count for m in modules)

    parts = [
        f"# {title}\n\n",
        f"**Generated:** {generated_on.isoformat()}\n\n",
        f"**Words:** {total_words:,}\n\n",
        f"**Provider:** {provider_name} ({model or 'unknown'})\n\n",
    ]
    if failed:
        parts.append(build_gaps_notice(failed) + "\n\n")
    parts.append("---\n\n## Table of Contents\n\n")
    parts.append(build_table_of_contents(modules) + "\n\n")
    parts.append("---\n\n")

    if introduction:
        parts.append(f"## Introduction\n\n{introduction.strip()}\n\n---\n\n")

    for i, module in enumerate(modules):
        parts.append(module.content.strip() + "\n\n")
        if i < len(modules) - 1:
            parts.append("---\n\n")

    if summary:
        parts.append(f"---\n\n## Summary\n\n{summary.strip()}\n\n")
    if glossary:
        parts.append(f"---\n\n## Glossary\n\n{glossary.strip()}\n")

    return "".join(parts).rstrip() + "\n"
