"""
Helper functions for report PDF generation.

HTML templates for Chromium's print header/footer and the table of
contents page, plus sanitising of values that end up in HTTP headers.
"""

import html
import re
from typing import Iterable, Optional
from urllib.parse import quote

from .models import TocEntry

# CSS reference pixel density used by Chromium when printing
CSS_PX_PER_INCH = 96
MM_PER_INCH = 25.4

# Pixels of left padding per character of TOC indentation
TOC_INDENT_PX = 5

DEFAULT_HEADER_TEMPLATE = """
    <div style="font-size: 10px; width: 100%; text-align: center;">
        <span class="title"></span>
    </div>
"""

DEFAULT_FOOTER_TEMPLATE = """
    <div style="font-size: 10px; width: 100%; text-align: center;">
        <span><span class="pageNumber"></span> / <span class="totalPages"></span></span>
    </div>
"""


def px_to_mm(px: float) -> float:
    """Convert CSS pixels to millimeters."""
    return px * MM_PER_INCH / CSS_PX_PER_INCH


def sanitize_filename(name: Optional[str], default: str = "output.pdf") -> str:
    """
    Build a download file name from a task name.

    Example:
        >>> sanitize_filename("Release 2.0 (final)")
        "Release_2_0__final_.pdf"
    """
    if not name:
        return default
    return f"{re.sub(r'[^a-zA-Z0-9_-]', '_', name)}.pdf"


def sanitize_header_name(identifier: str) -> str:
    """Restrict a metric identifier to characters valid in a header name."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", identifier)


def encode_header_value(value: str) -> str:
    """
    Make a metric value safe to send as an HTTP header.

    Latin-1 text without control characters passes through unchanged;
    anything else is percent-encoded.
    """
    value = "" if value is None else str(value)
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return quote(value, safe=" ")
    if re.search(r"[\x00-\x1f\x7f]", value):
        return quote(value, safe=" ")
    return value


def build_toc_html(entries: Iterable[TocEntry], heading: str) -> str:
    """
    Build the HTML document printed as the table of contents.

    Each entry is one flex row: title, dotted leader, right-aligned page
    number, indented proportionally to its nesting depth.

    Args:
        entries: Parsed TOC entries in document order
        heading: Heading printed above the list

    Returns:
        Complete HTML document string
    """
    rows = []
    for entry in entries:
        rows.append(
            f"""<div class="toc-entry" style="padding-left: {entry.indent * TOC_INDENT_PX}px">
                <span class="title">{html.escape(entry.title)}</span>
                <span class="dots"></span>
                <span class="page-number">{entry.page}</span>
            </div>"""
        )

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
    .toc-title {{
        text-align: center;
        font-size: 24px;
        font-weight: bold;
        margin: 20px 0 30px 0;
    }}
    .toc-entry {{
        display: flex;
        align-items: baseline;
        margin: 4px 0;
        overflow: hidden;
    }}
    .title {{
        white-space: nowrap;
    }}
    .dots {{
        margin: 0 4px;
        border-bottom: 1px dotted #000;
        flex: 1;
    }}
    .page-number {{
        white-space: nowrap;
        margin-left: 4px;
        text-align: right;
        min-width: 30px;
    }}
</style>
</head>
<body>
<div class="toc-title">{html.escape(heading)}</div>
{chr(10).join(rows)}
</body>
</html>"""
