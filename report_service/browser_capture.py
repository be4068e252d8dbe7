"""
Browser capture - renders tracker previews to paginated PDF via Playwright/Chromium.

One BrowserCapture owns exactly one Chromium instance for the duration of a
report run. It is an async context manager so the browser is closed on every
exit path, including cancellation by the request timeout.
"""

import logging
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlencode

from .config import ReportSettings, PAGE_FORMATS_MM
from .errors import CaptureFailed, HistoryCaptureFailed, ReportError, TitleMismatch
from .models import ExtractedMetrics
from .pdf_helpers import (
    CSS_PX_PER_INCH,
    DEFAULT_FOOTER_TEMPLATE,
    DEFAULT_HEADER_TEMPLATE,
    MM_PER_INCH,
    px_to_mm,
)

logger = logging.getLogger(__name__)

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

_REMOVE_EXCLUDED_JS = """
(selector) => {
    const nodes = document.querySelectorAll(selector);
    nodes.forEach(node => node.remove());
    return nodes.length;
}
"""

_BODY_WIDTH_JS = "() => document.body ? document.body.scrollWidth : 0"

_EXTRACT_METRICS_JS = """
(selector) => {
    const container = document.querySelector(selector);
    if (!container) {
        return null;
    }
    const result = {};
    container.querySelectorAll('input, select, textarea').forEach(el => {
        if (el.id) {
            result[el.id] = el.value == null ? '' : String(el.value);
        }
    });
    return result;
}
"""


@dataclass
class CaptureResult:
    """Printed preview plus the metrics scraped from it."""

    pdf_bytes: bytes
    metrics: ExtractedMetrics = field(default_factory=dict)
    landscape: bool = False
    elapsed_seconds: float = 0.0


def _viewport_for(page_format: str) -> Dict[str, int]:
    """Viewport matching the paper size, so only overflowing content is wider."""
    short_mm, long_mm = PAGE_FORMATS_MM[page_format]
    return {
        "width": round(short_mm / MM_PER_INCH * CSS_PX_PER_INCH),
        "height": round(long_mm / MM_PER_INCH * CSS_PX_PER_INCH),
    }


class BrowserCapture:
    """
    Drives one headless Chromium through login, preview capture and HTML printing.

    Usage:
        async with BrowserCapture(settings, run_id) as browser:
            await browser.login(username, password)
            result = await browser.capture_preview(url, task_name, header, footer)
    """

    def __init__(self, settings: ReportSettings, run_id: Optional[str] = None):
        self.settings = settings
        self.run_id = run_id or "-"
        self._stack: Optional[AsyncExitStack] = None
        self._browser = None
        self._context = None
        self._page = None

    def _log_prefix(self) -> str:
        return f"[run:{self.run_id[:8]}]"

    async def __aenter__(self) -> "BrowserCapture":
        # Import here to avoid loading Playwright on startup
        from playwright.async_api import async_playwright

        self._stack = AsyncExitStack()
        try:
            playwright = await self._stack.enter_async_context(async_playwright())
            launch_kwargs = {"headless": self.settings.browser_headless, "args": BROWSER_ARGS}
            if self.settings.chrome_executable_path:
                launch_kwargs["executable_path"] = self.settings.chrome_executable_path
            self._browser = await playwright.chromium.launch(**launch_kwargs)
            self._stack.push_async_callback(self._close_browser)

            self._context = await self._browser.new_context(
                viewport=_viewport_for(self.settings.page_format)
            )
            self._context.set_default_timeout(self.settings.navigation_timeout_ms)
            self._page = await self._context.new_page()
        except Exception as e:
            await self._stack.aclose()
            raise CaptureFailed(f"Failed to launch browser: {e}") from e

        logger.info(f"{self._log_prefix()} Browser launched")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._stack is not None:
            await self._stack.aclose()
            self._stack = None
        return False

    async def _close_browser(self) -> None:
        try:
            await self._browser.close()
            logger.info(f"{self._log_prefix()} Browser closed")
        except Exception as e:
            logger.warning(f"{self._log_prefix()} Failed to close browser cleanly: {e}")

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def login_url(self) -> str:
        return f"{self.settings.cbm_base_url}/login.spr"

    def preview_url(self, task_id: str, template_name: Optional[str] = None) -> str:
        params = {"task_id": task_id}
        if template_name and template_name.strip():
            params["template_name"] = template_name.strip()
        return f"{self.settings.cbm_base_url}/dtas/preview.spr?{urlencode(params)}"

    def history_url(self, task_id: str) -> str:
        return f"{self.settings.cbm_base_url}/dtas/preview-history.spr?{urlencode({'task_id': task_id})}"

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> None:
        """Submit the tracker login form and wait for the redirect to settle."""
        page = self._require_page()
        try:
            await page.goto(self.login_url(), wait_until="networkidle")
            await page.fill("#user", username)
            await page.fill("#password", password)
            async with page.expect_navigation(wait_until="networkidle"):
                await page.keyboard.press("Enter")
        except Exception as e:
            raise CaptureFailed(f"Login failed: {e}") from e
        logger.info(f"{self._log_prefix()} Logged in as {username}")

    async def capture_preview(
        self,
        url: str,
        expected_title: str,
        header_template: Optional[str] = None,
        footer_template: Optional[str] = None,
    ) -> CaptureResult:
        """
        Navigate to the preview, verify it is the requested task and print it.

        Raises:
            TitleMismatch: The page title differs from expected_title
            CaptureFailed: Navigation or printing failed
        """
        page = self._require_page()
        try:
            await page.goto(url, wait_until="networkidle")
            await page.wait_for_selector("title", state="attached")
            page_title = await page.title()
            if page_title != expected_title:
                logger.error(
                    f'{self._log_prefix()} Title mismatch - Expected: "{expected_title}", Got: "{page_title}"'
                )
                raise TitleMismatch(expected_title, page_title)
            logger.info(f'{self._log_prefix()} Title verified: "{page_title}"')

            await self._strip_excluded(page)
            metrics = await self.extract_metrics(page)
            landscape = await self.detect_landscape(page)
            pdf_bytes, elapsed = await self._print(
                page, header_template, footer_template, landscape
            )
        except ReportError:
            raise
        except Exception as e:
            raise CaptureFailed(f"Preview capture failed: {e}") from e

        logger.info(
            f"{self._log_prefix()} PDF convert took: {elapsed:.2f} seconds "
            f"({len(pdf_bytes)} bytes, landscape={landscape}, metrics={len(metrics)})"
        )
        return CaptureResult(pdf_bytes, metrics, landscape, elapsed)

    async def capture_history(
        self,
        url: str,
        header_template: Optional[str] = None,
        footer_template: Optional[str] = None,
    ) -> bytes:
        """Print the change-history page in a fresh tab of the logged-in context."""
        page = None
        try:
            page = await self._context.new_page()
            await page.goto(url, wait_until="networkidle")
            await self._strip_excluded(page)
            landscape = await self.detect_landscape(page)
            pdf_bytes, elapsed = await self._print(
                page, header_template, footer_template, landscape
            )
        except Exception as e:
            raise HistoryCaptureFailed(f"History capture failed: {e}") from e
        finally:
            if page is not None:
                await self._close_page(page)

        logger.info(f"{self._log_prefix()} History capture took: {elapsed:.2f} seconds")
        return pdf_bytes

    async def render_html(
        self,
        html: str,
        header_template: Optional[str] = None,
        footer_template: Optional[str] = None,
    ) -> bytes:
        """Print a standalone HTML document with the run's page settings."""
        page = None
        try:
            page = await self._context.new_page()
            await page.set_content(html, wait_until="networkidle")
            pdf_bytes, _ = await self._print(page, header_template, footer_template, False)
            return pdf_bytes
        finally:
            if page is not None:
                await self._close_page(page)

    async def extract_metrics(self, page) -> ExtractedMetrics:
        """Collect id -> value of input fields inside the metrics container."""
        raw = await page.evaluate(_EXTRACT_METRICS_JS, self.settings.metrics_selector)
        if not raw:
            return {}
        return {str(key): "" if value is None else str(value) for key, value in raw.items()}

    async def detect_landscape(self, page) -> bool:
        """Landscape when the rendered body is wider than the paper's short edge."""
        width_px = await page.evaluate(_BODY_WIDTH_JS)
        width_mm = px_to_mm(float(width_px or 0))
        landscape = width_mm > self.settings.short_edge_mm
        logger.debug(
            f"{self._log_prefix()} Body width {width_mm:.1f}mm vs "
            f"{self.settings.short_edge_mm}mm short edge -> landscape={landscape}"
        )
        return landscape

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_page(self):
        if self._page is None:
            raise CaptureFailed("Browser is not running; use BrowserCapture as an async context manager")
        return self._page

    async def _strip_excluded(self, page) -> None:
        if not self.settings.exclude_selector:
            return
        removed = await page.evaluate(_REMOVE_EXCLUDED_JS, self.settings.exclude_selector)
        if removed:
            logger.info(f"{self._log_prefix()} Removed {removed} excluded element(s)")

    async def _print(
        self,
        page,
        header_template: Optional[str],
        footer_template: Optional[str],
        landscape: bool,
    ) -> Tuple[bytes, float]:
        started = time.perf_counter()
        pdf_bytes = await page.pdf(
            format=self.settings.page_format,
            landscape=landscape,
            print_background=False,
            display_header_footer=True,
            header_template=header_template or DEFAULT_HEADER_TEMPLATE,
            footer_template=footer_template or DEFAULT_FOOTER_TEMPLATE,
            margin=self.settings.margins,
        )
        return pdf_bytes, time.perf_counter() - started

    async def _close_page(self, page) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.debug(f"{self._log_prefix()} Ignoring page close error: {e}")
