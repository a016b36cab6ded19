"""
Backlog sweeper: leases pending jobs, renders their derivatives and reports status.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from typing import Any

from services.derivatives.service import DerivativeService
from services.derivatives.upload import UploadClient
from services.job_store import JobStoreClient
from shared.config import config
from shared.enums import ARTIFACT_ORDER, JobStatus
from shared.errors import DerivativePipelineError, JobTimeoutError, UpstreamStatusError, ValidationError
from shared.http_client import AsyncHTTPClient
from shared.logging_utils import setup_logging
from shared.models import Asset, Job, JobOutcome

logger = setup_logging("queue-processor")

JOB_TIMEOUT_SECONDS = 300
SWEEP_CONCURRENCY = 2
NO_UPLOAD_URLS_MESSAGE = "no signed upload URLs provided"


class QueueProcessor:
    """
    Owns the "sweep in progress" state for the process.

    One instance is created per process and handed to whatever triggers sweeps.
    """

    def __init__(
        self,
        renderer: DerivativeService | None = None,
        http_client_factory: Callable[[], AsyncHTTPClient] | None = None,
        job_store_factory: Callable[..., JobStoreClient] = JobStoreClient,
        uploader_factory: Callable[..., UploadClient] = UploadClient,
        job_timeout: float = JOB_TIMEOUT_SECONDS,
        concurrency: int = SWEEP_CONCURRENCY,
        shuffle: Callable[[list[Any]], None] = random.shuffle,
    ) -> None:
        self.renderer = renderer or DerivativeService()
        self._http_client_factory = http_client_factory or self._default_http_client
        self._job_store_factory = job_store_factory
        self._uploader_factory = uploader_factory
        self.job_timeout = job_timeout
        self.concurrency = concurrency
        self._shuffle = shuffle
        self._processing = False
        self._sweep_task: asyncio.Task | None = None

    @staticmethod
    def _default_http_client() -> AsyncHTTPClient:
        return AsyncHTTPClient(timeout=float(config.get("http_timeout", 60)))

    @property
    def is_processing(self) -> bool:
        return self._processing

    def trigger(self) -> bool:
        """Start a sweep in the background unless one is already running."""
        if self._processing or (self._sweep_task is not None and not self._sweep_task.done()):
            return False
        self._sweep_task = asyncio.create_task(self.process_queue())
        return True

    async def shutdown(self) -> None:
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass

    async def process_queue(self) -> list[JobOutcome]:
        """
        Run one sweep over all pending jobs.

        Returns immediately with no outcomes when a sweep is already running.
        Jobs run in random order, at most ``concurrency`` at a time.
        """
        if self._processing:
            logger.info("Already processing, skipping")
            return []

        self._processing = True
        logger.info("Starting queue processing...")
        try:
            token = config.get("internal_api_token")
            if not token:
                logger.error("INTERNAL_API_TOKEN not set")
                return []

            async with self._http_client_factory() as http_client:
                store = self._job_store_factory(http_client, config.get("api_url"), token)
                try:
                    jobs = await store.fetch_pending_jobs()
                except UpstreamStatusError as exc:
                    logger.error("%s", exc)
                    return []

                logger.info("Found %s pending jobs", len(jobs))
                self._shuffle(jobs)
                semaphore = asyncio.Semaphore(self.concurrency)

                async def run_limited(job: Job) -> JobOutcome:
                    async with semaphore:
                        return await self.run_job(http_client, job, fallback_token=token)

                return list(await asyncio.gather(*(run_limited(job) for job in jobs)))
        except Exception as exc:
            logger.error("Queue sweep failed: %s", exc, exc_info=True)
            return []
        finally:
            self._processing = False
            logger.info("Processing cycle complete")

    async def run_job(self, http_client: AsyncHTTPClient, job: Job, fallback_token: str | None = None) -> JobOutcome:
        """Execute one job under the wall-clock budget and report its terminal status."""
        # Token is re-read per job so a rotation applies mid-sweep
        token = config.get("internal_api_token") or fallback_token
        store = self._job_store_factory(http_client, config.get("api_url"), token)

        try:
            try:
                uploaded = await asyncio.wait_for(
                    self._process_job(store, http_client, job),
                    timeout=self.job_timeout,
                )
            except asyncio.TimeoutError as exc:
                raise JobTimeoutError(f"Job timed out after {self.job_timeout:g}s") from exc
        except Exception as exc:
            return await self._handle_failure(store, job, exc)

        logger.info("Job %s completed successfully", job.id)
        return JobOutcome(job_id=job.id, status=JobStatus.COMPLETED, uploaded=uploaded)

    async def _process_job(self, store: JobStoreClient, http_client: AsyncHTTPClient, job: Job) -> dict[str, int]:
        logger.info("Processing job %s for asset %s", job.id, job.asset_id)

        response = await store.update_status(job.id, JobStatus.PROCESSING)
        if not response.ok:
            raise UpstreamStatusError(
                f"Failed to set processing status: {response.status}", status=response.status, url=response.url
            )

        if not job.has_upload_urls():
            raise DerivativePipelineError(NO_UPLOAD_URLS_MESSAGE)

        payload = await store.fetch_asset(job.asset_id)
        if not payload.svg_content:
            raise ValidationError("No SVG content found")
        svg_content = payload.svg_content
        asset = payload.asset
        if not asset.asset_id:
            asset = Asset.model_validate({**asset.model_dump(), "asset_id": job.asset_id})

        await asyncio.to_thread(self.renderer.validate, svg_content)
        logger.info("Generating files for %s...", asset.asset_id)

        uploader = self._uploader_factory(http_client)
        uploaded: dict[str, int] = {}
        failures: list[str] = []
        for kind in ARTIFACT_ORDER:
            url = job.upload_url_for(kind)
            if not url:
                logger.debug("Job %s has no %s upload URL, skipping", job.id, kind.value)
                continue
            try:
                buffer = await self.renderer.render_artifact(kind, svg_content, asset)
                await uploader.upload_artifact(url, kind, buffer)
            except Exception as exc:
                logger.error("Job %s: %s failed: %s", job.id, kind.value, exc)
                failures.append(f"{kind.value}: {exc}")
                continue
            uploaded[kind.value] = len(buffer)
            logger.info("Job %s: uploaded %s (%s bytes)", job.id, kind.value, len(buffer))

        if failures:
            raise DerivativePipelineError("; ".join(failures))

        response = await store.update_status(job.id, JobStatus.COMPLETED)
        if not response.ok:
            raise UpstreamStatusError(
                f"Failed to set completed status: {response.status}", status=response.status, url=response.url
            )
        return uploaded

    async def _handle_failure(self, store: JobStoreClient, job: Job, exc: Exception) -> JobOutcome:
        message = str(exc) or exc.__class__.__name__
        logger.error("Job %s failed: %s", job.id, message)
        status = JobStatus.FAILED if job.exhausted else JobStatus.PENDING

        try:
            await store.update_status(job.id, status, message)
        except Exception as update_exc:
            logger.warning("Could not record failure for job %s: %s", job.id, update_exc)

        return JobOutcome(job_id=job.id, status=status, error=message)
