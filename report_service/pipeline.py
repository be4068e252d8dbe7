"""
Report pipeline orchestration.

One run executes its stages strictly in sequence:

    credentials -> capture body -> [toc] -> [history] -> [cover] -> assemble

Capture and the title check are mandatory and fail fast. The bracketed
stages are optional; each returns a StageResult so a failure only removes
its own section from the AssemblyPlan. Scratch files live in a Workspace
and the browser in a BrowserCapture, both released on every exit path.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .browser_capture import BrowserCapture, CaptureResult
from .config import ReportSettings, decode_credentials
from .connector import Connector
from .cover_composer import CoverComposer
from .errors import (
    CoverConversionFailed,
    Degradation,
    HistoryCaptureFailed,
    MissingCredentials,
    StageResult,
    TocGenerationFailed,
)
from .logger import RunLogger, get_logger
from .models import AssemblyPlan, GenerationRequest, ReportResult
from .pdf_assembler import PdfAssembler
from .toc_extractor import TocExtractor
from .toc_renderer import TocPageRenderer
from .workspace import Workspace


@dataclass
class TocSection:
    """Outline-annotated body plus the printed TOC pages."""

    annotated_body: bytes
    toc_pdf: bytes


async def build_generation_request(
    task_id: str,
    user_id: str,
    template_name: Optional[str],
    connector: Connector,
) -> GenerationRequest:
    """Fetch task, tracker and preview metadata; any failure aborts the run."""
    task = await connector.fetch_task_details()
    tracker = await connector.fetch_tracker_details()
    preview = await connector.fetch_preview_metadata(template_name)
    return GenerationRequest(
        task_id=str(task_id),
        user_id=str(user_id),
        template_name=template_name.strip() if template_name and template_name.strip() else None,
        task=task,
        tracker=tracker,
        preview=preview,
    )


class ReportPipeline:
    """Builds the report PDF for one GenerationRequest."""

    def __init__(
        self,
        settings: ReportSettings,
        browser_factory: Callable[..., BrowserCapture] = BrowserCapture,
        toc_extractor: Optional[TocExtractor] = None,
        cover_composer: Optional[CoverComposer] = None,
        assembler: Optional[PdfAssembler] = None,
    ):
        self.settings = settings
        self.browser_factory = browser_factory
        self.toc_extractor = toc_extractor or TocExtractor(settings)
        self.cover_composer = cover_composer or CoverComposer(settings)
        self.assembler = assembler or PdfAssembler()

    def _credentials(self):
        try:
            return decode_credentials(self.settings.cbm_api_key)
        except ValueError as e:
            raise MissingCredentials(str(e)) from e

    async def run(self, request: GenerationRequest) -> ReportResult:
        """
        Execute every stage and return the assembled report.

        Raises:
            MissingCredentials, TitleMismatch, CaptureFailed: fatal stages failed
        """
        started = time.perf_counter()
        username, password = self._credentials()
        workspace = Workspace.create(self.settings.pdf_worker_home)
        log = get_logger(__name__, workspace.run_id, "pipeline")
        log.info(f"Generating report for task {request.task_id} ({request.task.name})")

        try:
            async with workspace:
                async with self.browser_factory(self.settings, workspace.run_id) as browser:
                    capture = await self._capture_body(browser, request, username, password, log)
                    workspace.write_body(capture.pdf_bytes)
                    toc = await self._toc_stage(browser, workspace, request, log.bind("toc"))
                    history = await self._history_stage(browser, request, log.bind("history"))

                cover = await self._cover_stage(workspace, request, log.bind("cover"))

                body = toc.value.annotated_body if toc.ok else capture.pdf_bytes
                plan = AssemblyPlan.build(
                    body=body,
                    toc=toc.value.toc_pdf if toc.ok else None,
                    history=history.value if history.ok else None,
                    cover=cover.value if cover.ok else None,
                )
                outcome = self.assembler.assemble(plan)
        finally:
            log.info(f"total generation took: {time.perf_counter() - started:.2f} seconds")

        degradations: List[Degradation] = [
            stage.error for stage in (toc, history, cover) if stage.error is not None
        ]
        if outcome.error is not None:
            degradations.append(outcome.error)

        log.info(
            f"Report assembled: sections={outcome.sections}, degraded={bool(degradations)}"
        )
        return ReportResult(
            pdf_bytes=outcome.pdf_bytes,
            metrics=capture.metrics,
            sections=outcome.sections,
            degradations=degradations,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _capture_body(
        self,
        browser: BrowserCapture,
        request: GenerationRequest,
        username: str,
        password: str,
        log: RunLogger,
    ) -> CaptureResult:
        await browser.login(username, password)
        url = browser.preview_url(request.task_id, request.template_name)
        log.info(f"Capturing preview {url}")
        return await browser.capture_preview(
            url,
            request.task.name,
            request.preview.header_template,
            request.preview.footer_template,
        )

    async def _toc_stage(
        self,
        browser: BrowserCapture,
        workspace: Workspace,
        request: GenerationRequest,
        log: RunLogger,
    ) -> StageResult[TocSection]:
        if not request.preview.render_toc:
            return StageResult.skipped("toc")

        try:
            artifacts = await self.toc_extractor.extract(
                workspace.body_path, workspace.toc_text_path, workspace.output_path
            )
            annotated_body = artifacts.annotated_pdf_path.read_bytes()
            renderer = TocPageRenderer(browser, self.settings.toc_heading)
            toc_pdf = await renderer.render(
                artifacts.listing_path,
                request.preview.header_template,
                request.preview.footer_template,
            )
        except (TocGenerationFailed, OSError) as e:
            log.error(f"TOC generation error, continuing without TOC: {e}")
            return StageResult.failure("toc", e)

        return StageResult.success("toc", TocSection(annotated_body, toc_pdf))

    async def _history_stage(
        self,
        browser: BrowserCapture,
        request: GenerationRequest,
        log: RunLogger,
    ) -> StageResult[bytes]:
        if not request.preview.render_history:
            return StageResult.skipped("history")

        try:
            history_pdf = await browser.capture_history(
                browser.history_url(request.task_id),
                request.preview.header_template,
                request.preview.footer_template,
            )
        except HistoryCaptureFailed as e:
            log.error(f"History generation error, continuing without history: {e}")
            return StageResult.failure("history", e)

        return StageResult.success("history", history_pdf)

    async def _cover_stage(
        self,
        workspace: Workspace,
        request: GenerationRequest,
        log: RunLogger,
    ) -> StageResult[bytes]:
        if not request.preview.wants_cover:
            return StageResult.skipped("cover")

        try:
            template_path = self.cover_composer.resolve_template(request.preview.cover_template)
            cover_path = await self.cover_composer.compose(
                template_path, request.preview.cover_data, workspace.cover_path
            )
            cover_pdf = cover_path.read_bytes()
        except (CoverConversionFailed, OSError) as e:
            log.error(f"Cover generation error, continuing without cover: {e}")
            return StageResult.failure("cover", e)

        return StageResult.success("cover", cover_pdf)
