"""
Report Service - FastAPI application for task report generation.

Provides the report download endpoint and a health probe. Each request
runs one ReportPipeline; the ConcurrencyGovernor counts runs in flight so
/health can report overload to the orchestrator.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from io import BytesIO
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from .auth import verify_token
from .config import settings, validate_config_on_startup
from .connector import Connector
from .errors import ReportError
from .governor import ConcurrencyGovernor
from .logger import setup_logging
from .models import HealthResponse
from .pdf_helpers import encode_header_value, sanitize_filename, sanitize_header_name
from .pipeline import ReportPipeline, build_generation_request

setup_logging(settings.log_level, settings.log_format, settings.logs_dir)
logger = logging.getLogger(__name__)

# Validate configuration at startup; a missing recipe is fatal here
validate_config_on_startup()

app = FastAPI(
    title="Report Service",
    version="0.1.0",
    description="Task preview to PDF report generation using Playwright/Chromium"
)

app.state.governor = ConcurrencyGovernor()
app.state.started_at = time.monotonic()


def get_governor(request: Request) -> ConcurrencyGovernor:
    return request.app.state.governor


def build_pipeline() -> ReportPipeline:
    return ReportPipeline(settings)


def build_connector(task_id: str) -> Connector:
    return Connector(task_id, settings)


async def _generate(task_id: str, user_id: str, template_name: Optional[str]):
    """Fetch upstream data and run the pipeline; bounded by the request timeout."""
    request = await build_generation_request(
        task_id, user_id, template_name, build_connector(task_id)
    )
    result = await build_pipeline().run(request)
    return request, result


def _metric_headers(metrics: Dict[str, str]) -> Dict[str, str]:
    """
    One x-metric-<id> header per extracted metric.

    Ids that collide after sanitising (header names are case-insensitive)
    get a numeric suffix instead of overwriting each other.
    """
    headers: Dict[str, str] = {}
    taken = set()
    for key, value in metrics.items():
        name = f"x-metric-{sanitize_header_name(key)}"
        if name.lower() in taken:
            suffix = 2
            while f"{name}-{suffix}".lower() in taken:
                suffix += 1
            logger.warning(
                f"Metric id {key!r} collides with another metric header; sending it as {name}-{suffix}"
            )
            name = f"{name}-{suffix}"
        taken.add(name.lower())
        headers[name] = encode_header_value(value)
    return headers


# ============================================================================
# Health Check Endpoint
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(governor: ConcurrencyGovernor = Depends(get_governor)) -> HealthResponse:
    """
    Health check endpoint for container orchestration.

    Returns HTTP 503 while more runs are active than MAX_PROCESS_NUM allows.
    """
    active = governor.value
    uptime = round(time.monotonic() - app.state.started_at, 3)

    if governor.is_overloaded(settings.max_process_num):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "overloaded",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": uptime,
                "active_workers": active,
                "max_workers": settings.max_process_num,
            }
        )

    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=uptime,
        active_workers=active,
        max_workers=settings.max_process_num,
    )


# ============================================================================
# Report Generation Endpoint
# ============================================================================

@app.get("/generate-pdf/{task_id}/{user_id}", dependencies=[Depends(verify_token)])
async def generate_pdf(
    task_id: str,
    user_id: str,
    template_name: Optional[str] = None,
    governor: ConcurrencyGovernor = Depends(get_governor),
):
    """
    Generate the PDF report for a task.

    Args:
        task_id: Tracker item id
        user_id: Requesting user id (must match the token)
        template_name: Optional preview template name

    Returns:
        StreamingResponse with PDF binary data and x-metric-* headers

    Raises:
        HTTPException: 401 for auth failures, 500 for generation failures,
            504 when the request timeout elapses
    """
    with governor.track():
        logger.info(f"PDF generation requested for task {task_id} by user {user_id}")
        try:
            request, result = await asyncio.wait_for(
                _generate(task_id, user_id, template_name),
                timeout=settings.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"PDF generation for task {task_id} timed out after {settings.request_timeout_seconds}s"
            )
            raise HTTPException(status_code=504, detail="Report generation timed out")
        except ReportError as e:
            logger.error(
                f"Error generating PDF for task {task_id} (template={template_name}): "
                f"{type(e).__name__}: {e}"
            )
            raise HTTPException(status_code=500, detail="Internal server error")
        except Exception:
            logger.exception(f"Unexpected error generating PDF for task {task_id}")
            raise HTTPException(status_code=500, detail="Internal server error")

        for degradation in result.degradations:
            logger.warning(f"Task {task_id} report degraded at {degradation.stage}: {degradation.message}")

        filename = sanitize_filename(request.task.name)
        headers = {
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(result.pdf_bytes)),
            "Cache-Control": "no-cache",
        }
        headers.update(_metric_headers(result.metrics))

        logger.info(f"PDF generation completed: {filename} ({len(result.pdf_bytes)} bytes)")
        return StreamingResponse(
            BytesIO(result.pdf_bytes),
            media_type="application/pdf",
            headers=headers,
        )
