"""Markdown to PDF rendering of a finished book.

Rendering happens in two passes: ``parse_markdown`` turns the book text
into a flat list of ``Block`` records and ``PdfRenderer`` lays those out
with reportlab. Only one export may run at a time per process.
"""

import html
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from reportlab.lib.colors import HexColor, white
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.platypus import (
    HRFlowable,
    PageBreak,
    Paragraph,
    Preformatted,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from pustakam.config import ExportConfig
from pustakam.errors import ExportError, ExportInProgressError, FontLoadError
from pustakam.models.book import BookProject
from pustakam.models.settings import provider_display_name

logger = logging.getLogger(__name__)

CONTINUED_MARKER = "... (continued on next page)"

ACCENT = HexColor("#2d3748")
MUTED = HexColor("#4a5568")
CODE_BG = HexColor("#f7fafc")
BORDER = HexColor("#cbd5e0")

_PAGE_SIZES = {"A4": A4, "LETTER": LETTER}

# Only one PDF is built at a time
_export_lock = threading.Lock()

_DASHES = re.compile("[\u2010-\u2015\u2212\uFE58\uFE63\uFF0D]")
_DOUBLE_QUOTES = re.compile("[\u201C\u201D]")
_SINGLE_QUOTES = re.compile("[\u2018\u2019]")


def normalize_text(text: str) -> str:
    """Replace typographic dashes, quotes and ellipses with ASCII."""
    text = _DASHES.sub("-", text)
    text = _DOUBLE_QUOTES.sub('"', text)
    text = _SINGLE_QUOTES.sub("'", text)
    return text.replace("\u2026", "...")


_INLINE_CODE = re.compile(r"`([^`]+)`")
_BOLD_ITALIC = re.compile(r"\*\*\*(?=\S)(.+?)(?<=\S)\*\*\*")
_BOLD = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*")
_BOLD_UNDERSCORE = re.compile(r"(?<!\w)__(?=\S)(.+?)(?<=\S)__(?!\w)")
_ITALIC = re.compile(r"(?<!\*)\*(?=\S)([^*]+?)(?<=\S)\*(?!\*)")
_ITALIC_UNDERSCORE = re.compile(r"(?<!\w)_(?=\S)([^_]+?)(?<=\S)_(?!\w)")
_STRIKE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_EMOJI = re.compile("([\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF])")
_PLACEHOLDER = "\x00{}\x00"


def parse_inline_markdown(text: str, mono_font: str = "Courier") -> str:
    """Convert inline markdown into reportlab paragraph markup.

    Supports bold, italic, bold-italic, strikethrough, inline code and
    links. Emoji are kept and colored so they stand out.
    """
    text = html.escape(text, quote=False)

    # Code spans are protected from the other rules
    spans: list[str] = []

    def _stash(match: re.Match) -> str:
        spans.append(match.group(1))
        return _PLACEHOLDER.format(len(spans) - 1)

    text = _INLINE_CODE.sub(_stash, text)
    text = _LINK.sub(r'<link href="\2" color="#2b6cb0"><u>\1</u></link>', text)
    text = _BOLD_ITALIC.sub(r"<b><i>\1</i></b>", text)
    text = _BOLD.sub(r"<b>\1</b>", text)
    text = _BOLD_UNDERSCORE.sub(r"<b>\1</b>", text)
    text = _ITALIC.sub(r"<i>\1</i>", text)
    text = _ITALIC_UNDERSCORE.sub(r"<i>\1</i>", text)
    text = _STRIKE.sub(r"<strike>\1</strike>", text)
    text = _EMOJI.sub(r'<font color="#d69e2e">\1</font>', text)

    for i, span in enumerate(spans):
        text = text.replace(
            _PLACEHOLDER.format(i),
            f'<font face="{mono_font}" backColor="#edf2f7">{span}</font>',
        )
    return text



@dataclass
class Block:
    """One layout unit of the book body."""

    kind: str  # heading, paragraph, bullet, numbered, quote, code, continued, page_break, table, rule
    text: str = ""
    level: int = 0
    number: int = 0
    lines: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    language: str = ""


_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_TOC_HEADING = re.compile(r"^#{1,2}\s+(table of contents|contents)\s*$", re.IGNORECASE)
_RULE = re.compile(r"^(-{3,}|\*{3,}|_{3,})$")
_TABLE_SEPARATOR = re.compile(r"^\|?[\s\-:]+\|")
_BULLET = re.compile(r"^(\s*)[-*+]\s+(.*)$")
_NUMBERED = re.compile(r"^\s*(\d+)[.)]\s+(.*)$")
_QUOTE = re.compile(r"^>\s?(.*)$")


def split_code_block(lines: list[str], max_lines: int) -> list[list[str]]:
    """Split code lines into chunks of at most ``max_lines`` lines."""
    if max_lines <= 0 or len(lines) <= max_lines:
        return [lines]
    return [lines[i : i + max_lines] for i in range(0, len(lines), max_lines)]


def _split_row(line: str) -> list[str]:
    line = line.strip()
    if line.startswith("|"):
        line = line[1:]
    if line.endswith("|"):
        line = line[:-1]
    return [cell.strip() for cell in line.split("|")]


def _is_table_header(line: str, next_line: str | None) -> bool:
    if next_line is None or "|" not in line:
        return False
    separator = next_line.strip()
    return "-" in separator and bool(_TABLE_SEPARATOR.match(separator))


def _capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:]


def parse_markdown(text: str, code_block_max_lines: int = 40) -> list[Block]:
    """Parse book markdown into layout blocks.

    The pass is line oriented: paragraphs are buffered until a blank or
    structural line, fenced code is collected verbatim and a "Table of
    Contents" section is dropped up to the next heading of equal or higher
    level.
    """
    lines = normalize_text(text).splitlines()
    blocks: list[Block] = []
    paragraph: list[str] = []
    code_lines: list[str] = []
    code_language = ""
    in_code = False
    toc_depth: int | None = None

    def flush_paragraph() -> None:
        if paragraph:
            blocks.append(Block("paragraph", " ".join(paragraph)))
            paragraph.clear()

    def flush_code() -> None:
        chunks = split_code_block(code_lines, code_block_max_lines)
        for i, chunk in enumerate(chunks):
            if i > 0:
                blocks.append(Block("page_break"))
            blocks.append(Block("code", lines=list(chunk), language=code_language))
            if i < len(chunks) - 1:
                blocks.append(Block("continued", CONTINUED_MARKER))
        code_lines.clear()

    i = 0
    while i < len(lines):
        line = lines[i]
        stripped = line.strip()

        if in_code:
            if stripped.startswith("```"):
                flush_code()
                in_code = False
            else:
                code_lines.append(line.rstrip())
            i += 1
            continue

        heading = _HEADING.match(stripped)
        if toc_depth is not None:
            if heading and len(heading.group(1)) <= toc_depth:
                toc_depth = None
            else:
                i += 1
                continue

        if stripped.startswith("```"):
            flush_paragraph()
            in_code = True
            code_language = stripped[3:].strip()
            i += 1
            continue

        if not stripped:
            flush_paragraph()
        elif heading:
            flush_paragraph()
            if _TOC_HEADING.match(stripped):
                toc_depth = len(heading.group(1))
            else:
                level = min(len(heading.group(1)), 4)
                blocks.append(Block("heading", _capitalize_first(heading.group(2)), level=level))
        elif _RULE.match(stripped):
            flush_paragraph()
            blocks.append(Block("rule"))
        elif _is_table_header(stripped, lines[i + 1] if i + 1 < len(lines) else None):
            flush_paragraph()
            header = _split_row(stripped)
            rows = [header]
            i += 2
            while i < len(lines) and "|" in lines[i] and lines[i].strip():
                cells = _split_row(lines[i])
                if len(cells) != len(header):
                    break
                rows.append(cells)
                i += 1
            blocks.append(Block("table", rows=rows))
            continue
        elif bullet := _BULLET.match(line):
            flush_paragraph()
            indent = len(bullet.group(1).expandtabs(4))
            blocks.append(Block("bullet", bullet.group(2).strip(), level=indent // 2))
        elif numbered := _NUMBERED.match(line):
            flush_paragraph()
            blocks.append(Block("numbered", numbered.group(2).strip(), number=int(numbered.group(1))))
        elif quote := _QUOTE.match(stripped):
            flush_paragraph()
            blocks.append(Block("quote", quote.group(1).strip()))
        else:
            paragraph.append(stripped)
        i += 1

    if in_code:
        flush_code()
    flush_paragraph()
    return blocks


def safe_pdf_filename(title: str, on: date | None = None) -> str:
    """Build ``Capitalized_Title_Words_YYYY-MM-DD.pdf`` from a book title."""
    on = on or date.today()
    cleaned = re.sub(r"[^a-z0-9\s-]", "", title, flags=re.IGNORECASE)
    name = "_".join(word.capitalize() for word in cleaned.split())[:50]
    return f"{name or 'Pustakam_Book'}_{on.isoformat()}.pdf"



class PdfRenderer:
    """Lays out a book project as a PDF document."""

    def __init__(self, config: ExportConfig | None = None) -> None:
        self.config = config or ExportConfig()
        self.body_font = "Helvetica"
        self.bold_font = "Helvetica-Bold"
        self.mono_font = "Courier"

    def _register_font(self, name: str, path: str) -> str:
        try:
            pdfmetrics.registerFont(TTFont(name, path))
        except (TTFError, OSError) as exc:
            raise FontLoadError(f"Could not load font {path}: {exc}") from exc
        pdfmetrics.registerFontFamily(name, normal=name, bold=name, italic=name, boldItalic=name)
        return name

    def _load_fonts(self) -> None:
        self.body_font, self.bold_font, self.mono_font = "Helvetica", "Helvetica-Bold", "Courier"
        if self.config.body_font_path:
            self.body_font = self.bold_font = self._register_font("PustakamBody", self.config.body_font_path)
        if self.config.mono_font_path:
            self.mono_font = self._register_font("PustakamMono", self.config.mono_font_path)

    def _styles(self) -> dict[str, ParagraphStyle]:
        base = getSampleStyleSheet()
        body, bold, mono = self.body_font, self.bold_font, self.mono_font
        return {
            "title": ParagraphStyle("CoverTitle", parent=base["Title"], fontName=bold,
                                    fontSize=28, leading=34, textColor=ACCENT, spaceAfter=18),
            "subtitle": ParagraphStyle("CoverSub", parent=base["Normal"], fontName=body,
                                       fontSize=12, textColor=MUTED, alignment=TA_CENTER, spaceAfter=6),
            "h1": ParagraphStyle("H1", parent=base["Heading1"], fontName=bold, fontSize=22,
                                 leading=28, textColor=ACCENT, spaceBefore=18, spaceAfter=10),
            "h2": ParagraphStyle("H2", parent=base["Heading2"], fontName=bold, fontSize=17,
                                 leading=22, textColor=ACCENT, spaceBefore=14, spaceAfter=8),
            "h3": ParagraphStyle("H3", parent=base["Heading3"], fontName=bold, fontSize=13.5,
                                 leading=18, textColor=ACCENT, spaceBefore=10, spaceAfter=6),
            "h4": ParagraphStyle("H4", parent=base["Heading4"], fontName=bold, fontSize=11.5,
                                 leading=15, textColor=MUTED, spaceBefore=8, spaceAfter=4),
            "body": ParagraphStyle("Body", parent=base["Normal"], fontName=body, fontSize=10.5,
                                   leading=15.5, spaceAfter=7),
            "bullet": ParagraphStyle("Bullet", parent=base["Normal"], fontName=body, fontSize=10.5,
                                     leading=15, leftIndent=14, spaceAfter=3),
            "quote": ParagraphStyle("Quote", parent=base["Normal"], fontName=body, fontSize=10.5,
                                    leading=15, textColor=MUTED),
            "code": ParagraphStyle("Code", parent=base["Code"], fontName=mono, fontSize=8.5, leading=11),
            "caption": ParagraphStyle("Caption", parent=base["Normal"], fontName=body, fontSize=8.5,
                                      textColor=MUTED, alignment=TA_CENTER, spaceAfter=6),
            "cell": ParagraphStyle("Cell", parent=base["Normal"], fontName=body, fontSize=9, leading=12),
            "cell_header": ParagraphStyle("CellHeader", parent=base["Normal"], fontName=bold,
                                          fontSize=9, leading=12, textColor=white),
            "disclaimer_title": ParagraphStyle("DisclaimerTitle", parent=base["Title"], fontName=bold,
                                               fontSize=18, textColor=ACCENT, spaceAfter=20),
            "disclaimer_heading": ParagraphStyle("DisclaimerHeading", parent=base["Heading3"], fontName=bold,
                                                 fontSize=12, textColor=ACCENT, spaceBefore=10, spaceAfter=8),
        }

    def _inline(self, text: str) -> str:
        return parse_inline_markdown(text, mono_font=self.mono_font)

    def _cover(self, project: BookProject, styles: dict, generated_on: date) -> list:
        model_line = f"{provider_display_name(project.provider)} ({project.model or 'unknown'})"
        chapters = len(project.completed_modules) or len(project.modules)
        info = Table(
            [
                [Paragraph("Document Information", styles["cell_header"]), ""],
                ["Word Count", f"{project.total_words:,}"],
                ["Chapters", str(chapters)],
                ["Generated", generated_on.isoformat()],
                ["AI Model", model_line],
            ],
            colWidths=[45 * mm, 95 * mm],
        )
        info.setStyle(TableStyle([
            ("SPAN", (0, 0), (-1, 0)),
            ("BACKGROUND", (0, 0), (-1, 0), ACCENT),
            ("FONTNAME", (0, 1), (0, -1), self.bold_font),
            ("FONTNAME", (1, 1), (1, -1), self.body_font),
            ("FONTSIZE", (0, 1), (-1, -1), 9.5),
            ("GRID", (0, 0), (-1, -1), 0.5, BORDER),
            ("TOPPADDING", (0, 0), (-1, -1), 5),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ]))
        return [
            Spacer(1, 55 * mm),
            Paragraph(self._inline(normalize_text(project.title)), styles["title"]),
            Paragraph("Generated by Pustakam", styles["subtitle"]),
            Paragraph(html.escape(model_line), styles["subtitle"]),
            Spacer(1, 18 * mm),
            info,
            PageBreak(),
        ]

    def _disclaimer(self, styles: dict, generated_on: date) -> list:
        notices = [
            "The content is produced by AI language models and may contain factual inaccuracies, "
            "outdated information, or logical inconsistencies.",
            "Information should be independently verified before being used for critical decisions, "
            "academic citations, or professional purposes.",
            "The AI may generate plausible-sounding but incorrect or fabricated information.",
            "Views and opinions expressed do not necessarily reflect those of the creators or developers.",
            "This content is not a substitute for professional advice in medical, legal, financial, "
            "or other specialized fields.",
        ]
        story = [
            PageBreak(),
            Spacer(1, 20 * mm),
            Paragraph("IMPORTANT DISCLAIMER", styles["disclaimer_title"]),
            Paragraph("AI-Generated Content Notice", styles["disclaimer_heading"]),
            Paragraph(
                "This document has been entirely generated by artificial intelligence through "
                "Pustakam. Readers should keep the following in mind:",
                styles["body"],
            ),
        ]
        story.extend(Paragraph(f"• {n}", styles["bullet"]) for n in notices)
        story += [
            Paragraph("Intellectual Property &amp; Usage", styles["disclaimer_heading"]),
            Paragraph(
                'This document is provided "as-is" for informational and educational purposes. '
                "Fact-check, cross-reference and critically evaluate its content.",
                styles["body"],
            ),
            Paragraph("Quality Assurance", styles["disclaimer_heading"]),
            Paragraph(
                "No warranty is made regarding completeness, reliability or accuracy. Users assume "
                "full responsibility for how they use and apply this content.",
                styles["body"],
            ),
            Spacer(1, 10 * mm),
            Paragraph(f"Generated by Pustakam on {generated_on.isoformat()}", styles["caption"]),
        ]
        return story

    def _table(self, rows: list[list[str]], styles: dict, available_width: float) -> Table:
        columns = len(rows[0])
        data = [[Paragraph(self._inline(c), styles["cell_header"]) for c in rows[0]]]
        data += [[Paragraph(self._inline(c), styles["cell"]) for c in row] for row in rows[1:]]
        col_widths = [available_width / columns] * columns if columns <= 4 else None
        table = Table(data, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), ACCENT),
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [white, CODE_BG]),
            ("GRID", (0, 0), (-1, -1), 0.5, BORDER),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        return table

    def _flowables(self, blocks: list[Block], styles: dict, available_width: float) -> list:
        story: list = []
        for block in blocks:
            if block.kind == "heading":
                story.append(Paragraph(self._inline(block.text), styles[f"h{block.level}"]))
            elif block.kind == "paragraph":
                story.append(Paragraph(self._inline(block.text), styles["body"]))
            elif block.kind == "bullet":
                style = ParagraphStyle("BulletNested", parent=styles["bullet"],
                                       leftIndent=14 + 12 * block.level)
                story.append(Paragraph(f"• {self._inline(block.text)}", style))
            elif block.kind == "numbered":
                story.append(Paragraph(f"{block.number}. {self._inline(block.text)}", styles["bullet"]))
            elif block.kind == "quote":
                quote = Table([[Paragraph(self._inline(block.text), styles["quote"])]],
                              colWidths=[available_width])
                quote.setStyle(TableStyle([
                    ("LINEBEFORE", (0, 0), (0, -1), 3, BORDER),
                    ("LEFTPADDING", (0, 0), (-1, -1), 10),
                ]))
                story.append(quote)
                story.append(Spacer(1, 2 * mm))
            elif block.kind == "code":
                code = Table([[Preformatted("\n".join(block.lines) or " ", styles["code"])]],
                             colWidths=[available_width])
                code.setStyle(TableStyle([
                    ("BACKGROUND", (0, 0), (-1, -1), CODE_BG),
                    ("BOX", (0, 0), (-1, -1), 0.75, BORDER),
                    ("LEFTPADDING", (0, 0), (-1, -1), 8),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]))
                story.append(code)
                story.append(Spacer(1, 2 * mm))
            elif block.kind == "continued":
                story.append(Paragraph(html.escape(block.text), styles["caption"]))
            elif block.kind == "page_break":
                story.append(PageBreak())
            elif block.kind == "table":
                story.append(self._table(block.rows, styles, available_width))
                story.append(Spacer(1, 3 * mm))
            elif block.kind == "rule":
                story.append(HRFlowable(width="100%", thickness=0.75, color=BORDER,
                                        spaceBefore=6, spaceAfter=6))
        return story

    def render(self, project: BookProject, output_dir: str | Path, generated_on: date | None = None) -> Path:
        """Write ``project.final_book`` as a PDF into ``output_dir``.

        Args:
            project: Book with an assembled ``final_book``.
            output_dir: Directory for the output file (created if missing).
            generated_on: Date printed on the cover and used in the file name.

        Returns:
            Path of the written PDF.

        Raises:
            ExportError: If the project has no final book or layout fails.
            ExportInProgressError: If another export is running.
            FontLoadError: If a configured font cannot be loaded.
        """
        if not project.final_book:
            raise ExportError(f"Book {project.id} has no assembled content to export")
        if not _export_lock.acquire(blocking=False):
            raise ExportInProgressError("A PDF export is already in progress")
        try:
            return self._render(project, Path(output_dir), generated_on or date.today())
        finally:
            _export_lock.release()

    def _render(self, project: BookProject, output_dir: Path, generated_on: date) -> Path:
        self._load_fonts()
        styles = self._styles()
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / safe_pdf_filename(project.title, generated_on)

        pagesize = _PAGE_SIZES.get(self.config.page_size.upper(), A4)
        doc = SimpleDocTemplate(
            str(path),
            pagesize=pagesize,
            leftMargin=20 * mm,
            rightMargin=20 * mm,
            topMargin=24 * mm,
            bottomMargin=20 * mm,
            title=project.title,
            author="Pustakam",
        )
        header_title = normalize_text(project.title)
        if len(header_title) > 70:
            header_title = header_title[:67] + "..."

        def draw_header(canvas, document) -> None:
            canvas.saveState()
            canvas.setFont(self.body_font, 8.5)
            canvas.setFillColor(MUTED)
            top = pagesize[1] - 14 * mm
            canvas.drawString(document.leftMargin, top, header_title)
            canvas.drawRightString(pagesize[0] - document.rightMargin, top, f"Page {document.page}")
            canvas.setStrokeColor(BORDER)
            canvas.line(document.leftMargin, top - 2 * mm, pagesize[0] - document.rightMargin, top - 2 * mm)
            canvas.restoreState()

        blocks = parse_markdown(project.final_book, self.config.code_block_max_lines)
        story = self._cover(project, styles, generated_on)
        story += self._flowables(blocks, styles, doc.width)
        story += self._disclaimer(styles, generated_on)

        try:
            doc.build(story, onLaterPages=draw_header)
        except Exception as exc:
            logger.exception("Failed to render PDF for book %s", project.id)
            raise ExportError(f"PDF layout failed: {exc}") from exc

        logger.info("Exported PDF for book %s to %s", project.id, path)
        return path


def export_pdf(project: BookProject, output_dir: str | Path, config: ExportConfig | None = None) -> Path:
    return PdfRenderer(config).render(project, output_dir)
