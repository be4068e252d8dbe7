"""
Cover composer - fills a .docx cover template and converts it with LibreOffice.

Placeholders are written as {{key}} in body paragraphs, table cells, and
section headers and footers. Word often splits a placeholder across several
runs, so matching is done on the paragraph's joined run text. The filled
working copy is deleted on every exit path.
"""

import logging
import shutil
import time
import zipfile
from pathlib import Path
from typing import Dict, Iterator

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.text.paragraph import Paragraph

from .config import ReportSettings
from .errors import CoverConversionFailed
from .toc_extractor import ToolError, run_tool

logger = logging.getLogger(__name__)


def placeholder(key: str) -> str:
    return "{{" + key + "}}"


def _container_paragraphs(container) -> Iterator[Paragraph]:
    """Paragraphs of a body, cell, header or footer, including nested tables."""
    yield from container.paragraphs
    for table in container.tables:
        for row in table.rows:
            for cell in row.cells:
                yield from _container_paragraphs(cell)


def iter_paragraphs(document) -> Iterator[Paragraph]:
    """Every paragraph that can carry a placeholder."""
    yield from _container_paragraphs(document)
    for section in document.sections:
        for part in (
            section.header,
            section.footer,
            section.first_page_header,
            section.first_page_footer,
            section.even_page_header,
            section.even_page_footer,
        ):
            # Linked parts have no definition of their own; reading them would add one
            if not part.is_linked_to_previous:
                yield from _container_paragraphs(part)


def _splice_runs(runs, start: int, end: int, value: str) -> None:
    """Replace joined-text span [start, end) with value, keeping the first run's formatting."""
    offset = 0
    inserted = False
    for run in runs:
        text = run.text
        run_start, run_end = offset, offset + len(text)
        offset = run_end
        if run_end <= start or run_start >= end:
            continue
        lo = max(start, run_start) - run_start
        hi = min(end, run_end) - run_start
        if not inserted:
            run.text = text[:lo] + value + text[hi:]
            inserted = True
        else:
            run.text = text[:lo] + text[hi:]


def fill_paragraph(paragraph: Paragraph, substitutions: Dict[str, str]) -> int:
    """
    Replace placeholders in one paragraph, even when split across runs.

    Returns:
        Number of placeholders replaced
    """
    runs = paragraph.runs
    text = "".join(run.text for run in runs)
    if "{{" not in text:
        return 0

    replaced = 0
    for key, value in substitutions.items():
        token = placeholder(key)
        start = text.find(token)
        while start != -1:
            _splice_runs(runs, start, start + len(token), value)
            text = "".join(run.text for run in runs)
            replaced += 1
            start = text.find(token, start + len(value))
    return replaced


def fill_docx(docx_path: Path, substitutions: Dict[str, str]) -> int:
    """
    Replace placeholders inside a .docx in place.

    Returns:
        Number of placeholders replaced
    """
    document = Document(str(docx_path))
    replaced = sum(fill_paragraph(p, substitutions) for p in iter_paragraphs(document))
    document.save(str(docx_path))
    return replaced


class CoverComposer:
    """Generates the cover page PDF from a template and key/value data."""

    def __init__(self, settings: ReportSettings):
        self.settings = settings

    def resolve_template(self, template_name: str) -> Path:
        """
        Resolve a template name inside the templates directory.

        Raises:
            CoverConversionFailed: The name escapes the directory or does not exist
        """
        templates_dir = self.settings.templates_dir.resolve()
        candidate = (templates_dir / template_name.strip()).resolve()
        if templates_dir not in candidate.parents:
            raise CoverConversionFailed(f"Cover template outside templates directory: {template_name}")
        if not candidate.is_file():
            raise CoverConversionFailed(f"Cover template does not exist: {candidate}")
        return candidate

    async def compose(self, template_path: Path, substitutions: Dict[str, str], output_path: Path) -> Path:
        """
        Fill the template and convert it to PDF at output_path.

        The working copy is named after output_path (same stem, .docx) so
        LibreOffice writes its PDF exactly there.

        Raises:
            CoverConversionFailed: On substitution, conversion or missing output
        """
        started = time.perf_counter()
        working_copy = output_path.with_suffix(".docx")
        try:
            try:
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(template_path, working_copy)
                replaced = fill_docx(working_copy, substitutions)
            except (OSError, PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
                raise CoverConversionFailed(f"Failed to fill cover template {template_path}: {e}") from e
            logger.debug(f"Replaced {replaced} placeholder(s) from {len(substitutions)} key(s)")

            cmd = [
                self.settings.soffice_bin,
                "--headless",
                "--convert-to", "pdf",
                "--outdir", str(output_path.parent),
                str(working_copy),
            ]
            try:
                await run_tool(cmd, timeout=self.settings.tool_timeout_seconds)
            except ToolError as e:
                raise CoverConversionFailed(f"Failed to convert document: {e}") from e

            if not output_path.exists():
                raise CoverConversionFailed("PDF conversion failed - output file not found")

            logger.info(
                f"Successfully converted {template_path.name} to {output_path} "
                f"in {time.perf_counter() - started:.2f} seconds"
            )
            return output_path
        finally:
            try:
                working_copy.unlink(missing_ok=True)
                logger.debug("Cleaned up temporary DOCX file")
            except OSError as e:
                logger.warning(f"Failed to cleanup temp file: {e}")
