"""
Pytest fixtures for report service tests.
"""

import base64
import os
import tempfile
import time
from io import BytesIO
from pathlib import Path

# IMPORTANT: Set environment variables BEFORE any imports from report_service
# to ensure ReportSettings is configured correctly when first loaded.
# Startup validation requires the upstream settings, the token secret and
# an existing recipe.toml under the worker home.
_WORKER_HOME = Path(tempfile.mkdtemp(prefix="pdfworker-test-"))
(_WORKER_HOME / "config").mkdir()
(_WORKER_HOME / "templates").mkdir()
(_WORKER_HOME / "config" / "recipe.toml").write_text(
    '[[heading]]\nlevel = 1\ngreedy = true\nfont.name = "Helvetica-Bold"\n'
)

TEST_SECRET = "test-secret-key-1234"
TEST_USERNAME = "alice"
TEST_PASSWORD = "s3cret:with:colons"

os.environ["CBM_BASE_URL"] = "https://tracker.example.com"
os.environ["CBM_API_KEY"] = base64.b64encode(f"{TEST_USERNAME}:{TEST_PASSWORD}".encode()).decode()
os.environ["SECRET"] = TEST_SECRET
os.environ["MAX_PROCESS_NUM"] = "2"
os.environ["PDF_WORKER_HOME"] = str(_WORKER_HOME)

import jwt
import pytest
from pypdf import PdfReader, PdfWriter

from report_service.config import ReportSettings


def make_pdf(widths) -> bytes:
    """Build a PDF whose pages are identified by their media box width."""
    writer = PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=842)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_widths(pdf_bytes: bytes):
    return [float(page.mediabox.width) for page in PdfReader(BytesIO(pdf_bytes)).pages]


def make_token(task_id="42", user_id="7", timestamp_ms=None, secret=TEST_SECRET) -> str:
    payload = {
        "task_id": task_id,
        "user_id": user_id,
        "timestamp": int(time.time() * 1000) if timestamp_ms is None else timestamp_ms,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def worker_home() -> Path:
    return _WORKER_HOME


@pytest.fixture
def report_settings(tmp_path: Path) -> ReportSettings:
    """Settings with an isolated worker home per test."""
    (tmp_path / "config").mkdir()
    (tmp_path / "templates").mkdir()
    (tmp_path / "config" / "recipe.toml").write_text('[[heading]]\nlevel = 1\n')
    return ReportSettings(
        cbm_base_url="https://tracker.example.com",
        cbm_api_key=os.environ["CBM_API_KEY"],
        secret=TEST_SECRET,
        pdf_worker_home=tmp_path,
    )


@pytest.fixture
def auth_headers():
    """Authentication headers for task 42 / user 7."""
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def pdf_factory():
    """Callable building a PDF with one blank page per given width."""
    return make_pdf


@pytest.fixture
def widths_of():
    """Callable returning the page widths of a PDF, in page order."""
    return page_widths


@pytest.fixture
def token_factory():
    """Callable minting report tokens."""
    return make_token
