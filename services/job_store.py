"""
Client for the external job store (pending jobs, status updates, asset source).
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from shared.enums import JobStatus
from shared.errors import UpstreamStatusError
from shared.http_client import AsyncHTTPClient, HTTPResponse
from shared.logging_utils import setup_logging
from shared.models import AssetPayload, Job, PendingJobsPayload, StatusUpdate

logger = setup_logging("job-store-client")

INTERNAL_PREFIX = "/api/internal"


class JobStoreClient:
    """Bearer-authenticated calls against the job store's internal API."""

    def __init__(self, http_client: AsyncHTTPClient, api_url: str, token: str) -> None:
        self.http_client = http_client
        self.api_url = api_url.rstrip("/")
        self.token = token

    def _url(self, path: str) -> str:
        return f"{self.api_url}{INTERNAL_PREFIX}{path}"

    def _headers(self, json_body: bool = False) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def fetch_pending_jobs(self) -> list[Job]:
        """
        Fetch every job currently in ``pending``.

        Records that do not describe a usable job are logged and skipped.

        Raises:
            UpstreamStatusError: the job store answered with a non-2xx status
        """
        url = self._url("/queue/pending")
        response = await self.http_client.get(url, headers=self._headers())
        if not response.ok:
            raise UpstreamStatusError(f"Failed to fetch jobs: {response.status}", status=response.status, url=url)
        payload = PendingJobsPayload.model_validate(response.json() or {})
        jobs: list[Job] = []
        for record in payload.jobs:
            try:
                jobs.append(Job.model_validate(record))
            except PydanticValidationError as exc:
                job_id = record.get("id") if isinstance(record, dict) else None
                logger.error("Skipping malformed job record %s: %s", job_id, exc.errors()[0].get("msg", exc))
        return jobs

    async def update_status(self, job_id: str | int, status: JobStatus, error: str | None = None) -> HTTPResponse:
        """PATCH a job's status. The response is returned as-is; callers decide what a failure means."""
        update = StatusUpdate(status=status, error=error)
        body: dict[str, Any] = update.model_dump(mode="json", exclude_none=True)
        return await self.http_client.patch(
            self._url(f"/queue/{job_id}"), data=body, headers=self._headers(json_body=True)
        )

    async def fetch_asset(self, asset_id: str) -> AssetPayload:
        """
        Fetch an asset record and its raw SVG source.

        Raises:
            UpstreamStatusError: the asset could not be fetched
        """
        url = self._url(f"/assets/{asset_id}")
        response = await self.http_client.get(url, headers=self._headers())
        if not response.ok:
            raise UpstreamStatusError(f"Failed to fetch asset: {response.status}", status=response.status, url=url)
        return AssetPayload.model_validate(response.json())
