"""
Document export for final reports.

The report assembler only needs ``render(markdown, title, filename) -> path``.

  - MarkdownFileRenderer writes the report as a markdown file with the
    title as its top-level heading.
  - PdfRenderer converts the markdown to HTML (Python-Markdown) and lays it
    out on A4 pages with fpdf2.

``build_renderer`` picks one from the ``report_format`` setting.
"""
from __future__ import annotations

import html
import logging
from pathlib import Path
from typing import Protocol, Union

import markdown as markdown_lib
from fpdf import FPDF
from fpdf.errors import FPDFException

logger = logging.getLogger(__name__)

REPORT_FORMATS = ("markdown", "pdf")

PDF_FONT = "Helvetica"
PDF_MARKDOWN_EXTENSIONS = ["fenced_code", "sane_lists"]


class RenderError(RuntimeError):
    """The document could not be laid out."""


class DocumentRenderer(Protocol):
    def render(self, markdown: str, title: str, filename: str) -> Path:
        ...


class MarkdownFileRenderer:
    """Saves reports as ``<reports_dir>/<filename>.md``."""

    def __init__(self, reports_dir: Union[str, Path] = "reports"):
        self.reports_dir = Path(reports_dir)

    def render(self, markdown: str, title: str, filename: str) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"{filename}.md"
        path.write_text(f"# {title}\n\n{markdown.strip()}\n", encoding="utf-8")
        logger.info(f"Report written to {path}")
        return path


class PdfRenderer:
    """Saves reports as ``<reports_dir>/<filename>.pdf`` (A4, portrait)."""

    def __init__(self, reports_dir: Union[str, Path] = "reports"):
        self.reports_dir = Path(reports_dir)

    def to_html(self, markdown: str, title: str) -> str:
        body = markdown_lib.markdown(markdown.strip(), extensions=PDF_MARKDOWN_EXTENSIONS)
        document = f"<h1>{html.escape(title)}</h1>\n{body}"
        # The core PDF fonts only cover Latin-1
        return document.encode("latin-1", "replace").decode("latin-1")

    def render(self, markdown: str, title: str, filename: str) -> Path:
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"{filename}.pdf"

        pdf = FPDF(orientation="portrait", format="A4")
        pdf.set_title(title)
        pdf.set_margins(20, 20, 20)
        pdf.set_auto_page_break(auto=True, margin=20)
        pdf.add_page()
        pdf.set_font(PDF_FONT, size=11)
        try:
            pdf.write_html(self.to_html(markdown, title))
        except FPDFException as e:
            raise RenderError(f"Could not lay out report {filename}: {e}") from e

        pdf.output(str(path))
        logger.info(f"Report written to {path}")
        return path


def build_renderer(report_format: str, reports_dir: Union[str, Path]) -> DocumentRenderer:
    if report_format == "pdf":
        return PdfRenderer(reports_dir)
    if report_format == "markdown":
        return MarkdownFileRenderer(reports_dir)
    raise ValueError(f"Unknown report format: {report_format!r} (expected one of {REPORT_FORMATS})")
