"""
Tracker API client.

Fetches the task, its tracker and the preview metadata that drive one
report run. Any failure aborts the run before the browser is started.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from .config import ReportSettings
from .errors import UpstreamFetchError
from .models import PreviewMetadata, TaskMetadata, TrackerMetadata

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 30.0


class Connector:
    """Read-only client for one task's upstream data."""

    def __init__(
        self,
        task_id: str,
        settings: ReportSettings,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.task_id = task_id
        self.settings = settings
        self._client = client
        self.task: Optional[TaskMetadata] = None

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Basic {self.settings.cbm_api_key}",
            "Content-Type": "application/json",
        }

    async def _get_json(self, resource: str, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=self._headers)
            else:
                async with httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT) as client:
                    response = await client.get(url, params=params, headers=self._headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Error fetching {resource}: HTTP {e.response.status_code}")
            raise UpstreamFetchError(resource, f"HTTP {e.response.status_code}", e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error(f"Error fetching {resource}: {e}")
            raise UpstreamFetchError(resource, f"request failed: {e}") from e
        except ValueError as e:
            raise UpstreamFetchError(resource, f"invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise UpstreamFetchError(resource, "expected a JSON object")
        return payload

    async def fetch_task_details(self) -> TaskMetadata:
        url = f"{self.settings.cbm_base_url}/api/v3/items/{self.task_id}"
        payload = await self._get_json("task", url)
        try:
            self.task = TaskMetadata.from_payload(payload)
        except ValidationError as e:
            raise UpstreamFetchError("task", f"unexpected payload: {e}") from e
        logger.info(f"fetch data for task {self.task_id}, task.name = {self.task.name}")
        return self.task

    async def fetch_tracker_details(self) -> TrackerMetadata:
        if self.task is None:
            await self.fetch_task_details()
        if self.task.tracker_id is None:
            raise UpstreamFetchError("tracker", f"task {self.task_id} has no tracker")

        url = f"{self.settings.cbm_base_url}/api/v3/trackers/{self.task.tracker_id}"
        payload = await self._get_json("tracker", url)
        try:
            tracker = TrackerMetadata(**payload)
        except ValidationError as e:
            raise UpstreamFetchError("tracker", f"unexpected payload: {e}") from e
        logger.info(f"Retrieved tracker {tracker.id}, description = {tracker.description}")
        return tracker

    async def fetch_preview_metadata(self, template_name: Optional[str] = None) -> PreviewMetadata:
        params = {"task_id": str(self.task_id)}
        if template_name and template_name.strip():
            params["template_name"] = template_name.strip()

        url = f"{self.settings.cbm_base_url}/dtas/preview-metadata.spr"
        payload = await self._get_json("preview metadata", url, params)
        try:
            metadata = PreviewMetadata.model_validate(payload)
        except ValidationError as e:
            raise UpstreamFetchError("preview metadata", f"unexpected payload: {e}") from e
        logger.info(
            f"Fetched preview metadata for task {self.task_id} "
            f"(render_toc={metadata.render_toc}, render_history={metadata.render_history}, "
            f"cover={metadata.cover_template})"
        )
        return metadata
