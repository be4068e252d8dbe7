"""
Unit tests for BrowserCapture.

Playwright is mocked; no Chromium is launched.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from report_service.browser_capture import BrowserCapture, _viewport_for
from report_service.errors import CaptureFailed, HistoryCaptureFailed, TitleMismatch


def _mock_page(title="Task 42", body_width=700, metrics=None, removed=0):
    page = MagicMock()
    page.goto = AsyncMock()
    page.fill = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.set_content = AsyncMock()
    page.title = AsyncMock(return_value=title)
    page.pdf = AsyncMock(return_value=b"%PDF-1.4 preview")
    page.close = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.expect_navigation = MagicMock(return_value=MagicMock())

    async def evaluate(script, arg=None):
        if "scrollWidth" in script:
            return body_width
        if "remove()" in script:
            return removed
        return metrics

    page.evaluate = AsyncMock(side_effect=evaluate)
    return page


def _mock_playwright(mock_playwright, page, extra_pages=()):
    browser = AsyncMock()
    context = MagicMock()
    context.new_page = AsyncMock(side_effect=[page, *extra_pages])
    browser.new_context = AsyncMock(return_value=context)
    mock_playwright.return_value.__aenter__ = AsyncMock(
        return_value=MagicMock(
            chromium=MagicMock(
                launch=AsyncMock(return_value=browser)
            )
        )
    )
    return browser, context


class TestLifecycle:
    """Browser launch and shutdown."""

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_browser_closed_on_exit(self, mock_playwright, report_settings):
        browser, context = _mock_playwright(mock_playwright, _mock_page())

        async with BrowserCapture(report_settings, "run12345"):
            browser.close.assert_not_called()

        browser.close.assert_awaited_once()
        launch = mock_playwright.return_value.__aenter__.return_value.chromium.launch
        assert launch.call_args.kwargs["headless"] is True
        assert "--no-sandbox" in launch.call_args.kwargs["args"]
        assert browser.new_context.call_args.kwargs["viewport"] == {"width": 794, "height": 1123}
        context.set_default_timeout.assert_called_once_with(report_settings.navigation_timeout_ms)

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_browser_closed_when_body_raises(self, mock_playwright, report_settings):
        browser, _ = _mock_playwright(mock_playwright, _mock_page())

        with pytest.raises(RuntimeError):
            async with BrowserCapture(report_settings):
                raise RuntimeError("boom")

        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_launch_failure_raises_capture_failed(self, mock_playwright, report_settings):
        mock_playwright.return_value.__aenter__ = AsyncMock(
            return_value=MagicMock(
                chromium=MagicMock(
                    launch=AsyncMock(side_effect=RuntimeError("Executable doesn't exist"))
                )
            )
        )

        with pytest.raises(CaptureFailed, match="Failed to launch browser"):
            async with BrowserCapture(report_settings):
                pass

    @pytest.mark.asyncio
    async def test_operations_require_running_browser(self, report_settings):
        with pytest.raises(CaptureFailed, match="not running"):
            await BrowserCapture(report_settings).login("alice", "pw")


class TestLogin:
    """Tracker login."""

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_login_fills_form_and_submits(self, mock_playwright, report_settings):
        page = _mock_page()
        _mock_playwright(mock_playwright, page)

        async with BrowserCapture(report_settings) as capture:
            await capture.login("alice", "s3cret")

        page.goto.assert_any_await("https://tracker.example.com/login.spr", wait_until="networkidle")
        page.fill.assert_any_await("#user", "alice")
        page.fill.assert_any_await("#password", "s3cret")
        page.keyboard.press.assert_awaited_once_with("Enter")
        page.expect_navigation.assert_called_once_with(wait_until="networkidle")

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_login_failure_raises_capture_failed(self, mock_playwright, report_settings):
        page = _mock_page()
        page.fill = AsyncMock(side_effect=TimeoutError("no #user field"))
        _mock_playwright(mock_playwright, page)

        with pytest.raises(CaptureFailed, match="Login failed"):
            async with BrowserCapture(report_settings) as capture:
                await capture.login("alice", "s3cret")


class TestCapturePreview:
    """Preview capture, title check, metrics and orientation."""

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_capture_success(self, mock_playwright, report_settings):
        page = _mock_page(metrics={"total": 12, "open": None})
        _mock_playwright(mock_playwright, page)

        async with BrowserCapture(report_settings) as capture:
            result = await capture.capture_preview("https://x/preview", "Task 42", "<h/>", "<f/>")

        assert result.pdf_bytes == b"%PDF-1.4 preview"
        assert result.metrics == {"total": "12", "open": ""}
        assert result.landscape is False
        kwargs = page.pdf.call_args.kwargs
        assert kwargs["format"] == "A4"
        assert kwargs["print_background"] is False
        assert kwargs["display_header_footer"] is True
        assert kwargs["header_template"] == "<h/>"
        assert kwargs["footer_template"] == "<f/>"
        assert kwargs["margin"] == {"top": "50px", "right": "50px", "bottom": "50px", "left": "50px"}

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_title_mismatch_raises_and_closes_browser(self, mock_playwright, report_settings):
        page = _mock_page(title="Some other task")
        browser, _ = _mock_playwright(mock_playwright, page)

        with pytest.raises(TitleMismatch) as exc_info:
            async with BrowserCapture(report_settings) as capture:
                await capture.capture_preview("https://x/preview", "Task 42")

        assert exc_info.value.expected == "Task 42"
        assert exc_info.value.actual == "Some other task"
        page.pdf.assert_not_called()
        browser.close.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_wide_body_prints_landscape(self, mock_playwright, report_settings):
        # 1200px at 96dpi is about 317mm, wider than A4's 210mm short edge
        page = _mock_page(body_width=1200)
        _mock_playwright(mock_playwright, page)

        async with BrowserCapture(report_settings) as capture:
            result = await capture.capture_preview("https://x/preview", "Task 42")

        assert result.landscape is True
        assert page.pdf.call_args.kwargs["landscape"] is True

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_missing_metrics_container_gives_empty_metrics(self, mock_playwright, report_settings):
        _mock_playwright(mock_playwright, _mock_page(metrics=None))

        async with BrowserCapture(report_settings) as capture:
            result = await capture.capture_preview("https://x/preview", "Task 42")

        assert result.metrics == {}

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_default_header_footer_used(self, mock_playwright, report_settings):
        page = _mock_page()
        _mock_playwright(mock_playwright, page)

        async with BrowserCapture(report_settings) as capture:
            await capture.capture_preview("https://x/preview", "Task 42")

        kwargs = page.pdf.call_args.kwargs
        assert "pageNumber" in kwargs["footer_template"]
        assert kwargs["header_template"]

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_print_failure_wrapped(self, mock_playwright, report_settings):
        page = _mock_page()
        page.pdf = AsyncMock(side_effect=RuntimeError("Target closed"))
        _mock_playwright(mock_playwright, page)

        with pytest.raises(CaptureFailed, match="Target closed"):
            async with BrowserCapture(report_settings) as capture:
                await capture.capture_preview("https://x/preview", "Task 42")


class TestSecondaryPages:
    """History capture and HTML rendering use their own tabs."""

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_render_html_closes_its_tab(self, mock_playwright, report_settings):
        tab = _mock_page()
        tab.pdf = AsyncMock(return_value=b"%PDF-toc")
        _mock_playwright(mock_playwright, _mock_page(), extra_pages=[tab])

        async with BrowserCapture(report_settings) as capture:
            pdf = await capture.render_html("<html>toc</html>")

        assert pdf == b"%PDF-toc"
        tab.set_content.assert_awaited_once_with("<html>toc</html>", wait_until="networkidle")
        tab.close.assert_awaited_once()
        assert tab.pdf.call_args.kwargs["landscape"] is False

    @pytest.mark.asyncio
    @patch("playwright.async_api.async_playwright")
    async def test_history_failure_raises_history_capture_failed(self, mock_playwright, report_settings):
        tab = _mock_page()
        tab.goto = AsyncMock(side_effect=RuntimeError("net::ERR_ABORTED"))
        _mock_playwright(mock_playwright, _mock_page(), extra_pages=[tab])

        async with BrowserCapture(report_settings) as capture:
            with pytest.raises(HistoryCaptureFailed):
                await capture.capture_history(capture.history_url("42"))

        tab.close.assert_awaited_once()


class TestUrls:
    """URL builders."""

    def test_preview_url_with_template(self, report_settings):
        url = BrowserCapture(report_settings).preview_url("42", "  Weekly Report ")
        assert url == "https://tracker.example.com/dtas/preview.spr?task_id=42&template_name=Weekly+Report"

    def test_preview_url_without_template(self, report_settings):
        url = BrowserCapture(report_settings).preview_url("42", "   ")
        assert url == "https://tracker.example.com/dtas/preview.spr?task_id=42"

    def test_history_url(self, report_settings):
        url = BrowserCapture(report_settings).history_url("42")
        assert url == "https://tracker.example.com/dtas/preview-history.spr?task_id=42"

    def test_viewport_matches_paper(self):
        assert _viewport_for("A4") == {"width": 794, "height": 1123}
