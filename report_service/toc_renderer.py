"""
Renders the plain-text TOC listing into table of contents pages.
"""

import logging
import re
import time
from pathlib import Path
from typing import List, Optional

from .browser_capture import BrowserCapture
from .errors import TocGenerationFailed
from .models import TocEntry
from .pdf_helpers import build_toc_html

logger = logging.getLogger(__name__)

# Leading whitespace, title, whitespace, trailing page number
_TOC_LINE = re.compile(r"^(\s*)(.*?)\s+(\d+)\s*$")


def parse_toc_line(line: str) -> Optional[TocEntry]:
    """
    Parse one listing line; None when the line is blank or malformed.

    Example:
        >>> parse_toc_line('  "Intro" 3')
        TocEntry(title='Intro', indent=2, page=3)
    """
    if not line.strip():
        return None
    match = _TOC_LINE.match(line.rstrip("\r\n"))
    if not match:
        return None
    indent, title, page = match.groups()
    title = title.replace('"', "").strip()
    page_number = int(page)
    if not title or page_number < 1:
        return None
    return TocEntry(title=title, indent=len(indent), page=page_number)


def parse_toc_listing(text: str) -> List[TocEntry]:
    """Parse the listing in document order, skipping blank and malformed lines."""
    entries = []
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        entry = parse_toc_line(line)
        if entry is None:
            logger.debug(f"Skipping malformed TOC line {line_no}: {line!r}")
            continue
        entries.append(entry)
    return entries


class TocPageRenderer:
    """Prints parsed TOC entries through the run's browser."""

    def __init__(self, browser: BrowserCapture, heading: str):
        self.browser = browser
        self.heading = heading

    async def render(
        self,
        listing_path: Path,
        header_template: Optional[str] = None,
        footer_template: Optional[str] = None,
    ) -> bytes:
        """
        Read the listing and print it as one or more PDF pages.

        Raises:
            TocGenerationFailed: The listing is unreadable, empty, or printing failed
        """
        started = time.perf_counter()
        try:
            text = listing_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise TocGenerationFailed(f"Cannot read TOC listing {listing_path}: {e}") from e

        entries = parse_toc_listing(text)
        if not entries:
            raise TocGenerationFailed("TOC listing contains no usable entries")

        html = build_toc_html(entries, self.heading)
        try:
            pdf_bytes = await self.browser.render_html(html, header_template, footer_template)
        except Exception as e:
            raise TocGenerationFailed(f"TOC page rendering failed: {e}") from e

        logger.info(
            f"Toc page generation took: {time.perf_counter() - started:.2f} seconds "
            f"({len(entries)} entries)"
        )
        return pdf_bytes
