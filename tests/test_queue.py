"""Tests for the backlog sweeper."""

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.derivatives.upload import UploadClient
from services.queue import NO_UPLOAD_URLS_MESSAGE, QueueProcessor
from shared.config import config as service_config
from shared.enums import ArtifactKind, JobStatus
from shared.errors import RenderError, TransportError, UpstreamStatusError, ValidationError
from shared.http_client import HTTPResponse
from shared.models import Asset, AssetPayload, Job

ALL_URLS = {
    "thumbnail": "https://storage.test/thumb?sig=1",
    "og": "https://storage.test/og?sig=2",
    "pdf": "https://storage.test/pdf?sig=3",
}


def make_job(job_id: int = 1, attempts: int = 0, max_attempts: int = 3, **overrides: Any) -> Job:
    data = {
        "id": job_id,
        "asset_id": f"HP-ANI-{job_id:05d}",
        "attempts": attempts,
        "max_attempts": max_attempts,
        "upload_urls": dict(ALL_URLS),
    }
    data.update(overrides)
    return Job.model_validate(data)


class FakeJobStore:
    def __init__(self, jobs: list[Job] | None = None) -> None:
        self.jobs = jobs or []
        self.fetch_calls = 0
        self.asset_calls: list[str] = []
        self.updates: list[tuple[Any, JobStatus, str | None]] = []
        self.svg_content: str | None = "<svg/>"
        self.status_codes: dict[JobStatus, int] = {}
        self.raise_on: set[JobStatus] = set()
        self.pending_error: Exception | None = None

    async def fetch_pending_jobs(self) -> list[Job]:
        self.fetch_calls += 1
        if self.pending_error:
            raise self.pending_error
        return list(self.jobs)

    async def update_status(self, job_id, status: JobStatus, error: str | None = None) -> HTTPResponse:
        self.updates.append((job_id, status, error))
        if status in self.raise_on:
            raise TransportError("job store unreachable")
        return HTTPResponse(status=self.status_codes.get(status, 200))

    async def fetch_asset(self, asset_id: str) -> AssetPayload:
        self.asset_calls.append(asset_id)
        return AssetPayload(asset=Asset(asset_id=asset_id, title="Cozy Capybara"), svg_content=self.svg_content)

    def statuses_for(self, job_id) -> list[JobStatus]:
        return [status for (jid, status, _) in self.updates if jid == job_id]


class FakeRenderer:
    def __init__(self, delay: float = 0, error: Exception | None = None) -> None:
        self.delay = delay
        self.error = error
        self.calls: list[tuple[ArtifactKind, str]] = []
        self.in_flight: set[str] = set()
        self.max_in_flight = 0
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None
        self.validate_error: Exception | None = None

    def validate(self, svg_content: str) -> str:
        if self.validate_error:
            raise self.validate_error
        return svg_content

    async def render_artifact(self, kind: ArtifactKind, svg_content: str, asset: Asset) -> bytes:
        self.calls.append((kind, asset.asset_id))
        self.in_flight.add(asset.asset_id)
        self.max_in_flight = max(self.max_in_flight, len(self.in_flight))
        self.started.set()
        try:
            if self.release is not None:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error:
                raise self.error
            return f"{kind.value}-bytes".encode()
        finally:
            self.in_flight.discard(asset.asset_id)


class FakeHTTP:
    def __init__(self) -> None:
        self.put = AsyncMock(return_value=HTTPResponse(status=200))

    async def __aenter__(self) -> "FakeHTTP":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


def build_processor(store: FakeJobStore, renderer: FakeRenderer, **kwargs: Any) -> tuple[QueueProcessor, FakeHTTP, list]:
    http = FakeHTTP()
    tokens: list[str] = []

    def job_store_factory(http_client, api_url, token):
        tokens.append(token)
        return store

    kwargs.setdefault("shuffle", lambda jobs: None)
    processor = QueueProcessor(
        renderer=renderer,
        http_client_factory=lambda: http,
        job_store_factory=job_store_factory,
        uploader_factory=UploadClient,
        **kwargs,
    )
    return processor, http, tokens


@pytest.mark.asyncio
async def test_successful_job_uploads_all_artifacts_in_order() -> None:
    store = FakeJobStore([make_job(1)])
    renderer = FakeRenderer()
    processor, http, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert [outcome.status for outcome in outcomes] == [JobStatus.COMPLETED]
    assert [kind for kind, _ in renderer.calls] == [ArtifactKind.THUMBNAIL, ArtifactKind.OG, ArtifactKind.PDF]
    assert store.statuses_for(1) == [JobStatus.PROCESSING, JobStatus.COMPLETED]
    assert [call.args[0] for call in http.put.await_args_list] == list(ALL_URLS.values())
    assert outcomes[0].uploaded == {"thumbnail": 15, "og": 8, "pdf": 9}


@pytest.mark.asyncio
async def test_upload_token_is_never_sent_to_storage() -> None:
    store = FakeJobStore([make_job(1, upload_token="job-secret")])
    processor, http, _ = build_processor(store, FakeRenderer())

    await processor.process_queue()

    for call in http.put.await_args_list:
        headers = call.kwargs["headers"]
        assert "Authorization" not in headers
        assert "job-secret" not in headers.values()


@pytest.mark.asyncio
async def test_missing_urls_are_skipped() -> None:
    store = FakeJobStore([make_job(1, upload_urls={"pdf": ALL_URLS["pdf"], "og": None})])
    renderer = FakeRenderer()
    processor, _, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert outcomes[0].status == JobStatus.COMPLETED
    assert [kind for kind, _ in renderer.calls] == [ArtifactKind.PDF]
    assert list(outcomes[0].uploaded) == ["pdf"]


@pytest.mark.asyncio
async def test_no_upload_urls_fails_before_fetching_asset() -> None:
    store = FakeJobStore([make_job(1, upload_urls={})])
    processor, _, _ = build_processor(store, FakeRenderer())

    outcomes = await processor.process_queue()

    assert outcomes[0].status == JobStatus.PENDING
    assert outcomes[0].error == NO_UPLOAD_URLS_MESSAGE
    assert store.asset_calls == []
    assert store.updates[-1] == (1, JobStatus.PENDING, NO_UPLOAD_URLS_MESSAGE)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "attempts,expected",
    [(0, JobStatus.PENDING), (2, JobStatus.PENDING), (3, JobStatus.FAILED), (5, JobStatus.FAILED)],
)
async def test_retry_and_failure_boundary(attempts: int, expected: JobStatus) -> None:
    store = FakeJobStore([make_job(1, attempts=attempts, max_attempts=3)])
    processor, _, _ = build_processor(store, FakeRenderer(error=RenderError("cairo exploded")))

    outcomes = await processor.process_queue()

    assert outcomes[0].status == expected
    job_id, status, error = store.updates[-1]
    assert status == expected
    assert "cairo exploded" in error


@pytest.mark.asyncio
async def test_artifact_failure_does_not_stop_later_artifacts() -> None:
    class FlakyRenderer(FakeRenderer):
        async def render_artifact(self, kind, svg_content, asset):
            if kind is ArtifactKind.THUMBNAIL:
                self.calls.append((kind, asset.asset_id))
                raise RenderError("thumbnail broke")
            return await super().render_artifact(kind, svg_content, asset)

    store = FakeJobStore([make_job(1)])
    renderer = FlakyRenderer()
    processor, http, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert [kind for kind, _ in renderer.calls] == [ArtifactKind.THUMBNAIL, ArtifactKind.OG, ArtifactKind.PDF]
    assert http.put.await_count == 2
    assert outcomes[0].status == JobStatus.PENDING
    assert "thumbnail broke" in outcomes[0].error
    assert JobStatus.COMPLETED not in store.statuses_for(1)


@pytest.mark.asyncio
async def test_invalid_svg_fails_before_any_artifact() -> None:
    store = FakeJobStore([make_job(1)])
    renderer = FakeRenderer()
    renderer.validate_error = ValidationError("SVG content too large (max 5MB)")
    processor, http, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert outcomes[0].error == "SVG content too large (max 5MB)"
    assert renderer.calls == []
    http.put.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_svg_content_fails_job() -> None:
    store = FakeJobStore([make_job(1)])
    store.svg_content = None
    processor, _, _ = build_processor(store, FakeRenderer())

    outcomes = await processor.process_queue()

    assert outcomes[0].error == "No SVG content found"


@pytest.mark.asyncio
async def test_upload_rejection_fails_job() -> None:
    store = FakeJobStore([make_job(1, upload_urls={"og": ALL_URLS["og"]})])
    processor, http, _ = build_processor(store, FakeRenderer())
    http.put.return_value = HTTPResponse(status=403)

    outcomes = await processor.process_queue()

    assert outcomes[0].status == JobStatus.PENDING
    assert "Upload failed: 403" in outcomes[0].error


@pytest.mark.asyncio
async def test_processing_status_rejection_fails_job() -> None:
    store = FakeJobStore([make_job(1)])
    store.status_codes[JobStatus.PROCESSING] = 404
    renderer = FakeRenderer()
    processor, _, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert "Failed to set processing status: 404" in outcomes[0].error
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_completed_status_rejection_fails_job() -> None:
    store = FakeJobStore([make_job(1)])
    store.status_codes[JobStatus.COMPLETED] = 500
    processor, _, _ = build_processor(store, FakeRenderer())

    outcomes = await processor.process_queue()

    assert outcomes[0].status == JobStatus.PENDING
    assert "Failed to set completed status: 500" in outcomes[0].error


@pytest.mark.asyncio
async def test_failure_status_update_is_best_effort() -> None:
    store = FakeJobStore([make_job(1, attempts=3)])
    store.raise_on = {JobStatus.FAILED, JobStatus.PENDING}
    processor, _, _ = build_processor(store, FakeRenderer(error=RenderError("boom")))

    outcomes = await processor.process_queue()

    assert outcomes[0].status == JobStatus.FAILED
    assert outcomes[0].error == "boom"
    assert not processor.is_processing


@pytest.mark.asyncio
async def test_job_timeout_is_a_failure() -> None:
    store = FakeJobStore([make_job(1), make_job(2)])
    renderer = FakeRenderer(delay=5)
    processor, _, _ = build_processor(store, renderer, job_timeout=0.05)

    outcomes = await processor.process_queue()

    assert [outcome.status for outcome in outcomes] == [JobStatus.PENDING, JobStatus.PENDING]
    assert all("timed out" in outcome.error for outcome in outcomes)


@pytest.mark.asyncio
async def test_at_most_two_jobs_in_flight() -> None:
    store = FakeJobStore([make_job(job_id) for job_id in range(1, 7)])
    renderer = FakeRenderer(delay=0.01)
    processor, _, _ = build_processor(store, renderer)

    outcomes = await processor.process_queue()

    assert len(outcomes) == 6
    assert all(outcome.status == JobStatus.COMPLETED for outcome in outcomes)
    assert renderer.max_in_flight == 2


@pytest.mark.asyncio
async def test_jobs_are_shuffled() -> None:
    jobs = [make_job(job_id) for job_id in range(1, 4)]
    store = FakeJobStore(jobs)
    shuffle = MagicMock()
    processor, _, _ = build_processor(store, FakeRenderer(), shuffle=shuffle)

    await processor.process_queue()

    shuffle.assert_called_once()
    assert [job.id for job in shuffle.call_args.args[0]] == [1, 2, 3]


@pytest.mark.asyncio
async def test_concurrent_trigger_is_a_noop() -> None:
    store = FakeJobStore([make_job(1)])
    renderer = FakeRenderer()
    renderer.release = asyncio.Event()
    processor, _, _ = build_processor(store, renderer)

    first = asyncio.create_task(processor.process_queue())
    await renderer.started.wait()

    assert processor.is_processing
    assert await processor.process_queue() == []
    assert processor.trigger() is False
    assert store.fetch_calls == 1

    renderer.release.set()
    outcomes = await first

    assert len(outcomes) == 1
    assert not processor.is_processing


@pytest.mark.asyncio
async def test_flag_cleared_after_unexpected_error() -> None:
    store = FakeJobStore()
    store.pending_error = RuntimeError("unexpected")
    processor, _, _ = build_processor(store, FakeRenderer())

    assert await processor.process_queue() == []
    assert not processor.is_processing
    assert await processor.process_queue() == []
    assert store.fetch_calls == 2


@pytest.mark.asyncio
async def test_pending_fetch_rejected_ends_sweep() -> None:
    store = FakeJobStore([make_job(1)])
    store.pending_error = UpstreamStatusError("Failed to fetch jobs: 401", status=401)
    renderer = FakeRenderer()
    processor, _, _ = build_processor(store, renderer)

    assert await processor.process_queue() == []
    assert renderer.calls == []


@pytest.mark.asyncio
async def test_missing_token_skips_sweep() -> None:
    service_config.set("internal_api_token", None)
    store = FakeJobStore([make_job(1)])
    processor, _, tokens = build_processor(store, FakeRenderer())

    assert await processor.process_queue() == []
    assert store.fetch_calls == 0
    assert tokens == []


@pytest.mark.asyncio
async def test_token_is_read_per_job() -> None:
    store = FakeJobStore()
    processor, http, tokens = build_processor(store, FakeRenderer())
    service_config.set("internal_api_token", "rotated-token")

    await processor.run_job(http, make_job(1), fallback_token="old-token")

    assert tokens == ["rotated-token"]


@pytest.mark.asyncio
async def test_trigger_runs_sweep_in_background() -> None:
    store = FakeJobStore([make_job(1)])
    processor, _, _ = build_processor(store, FakeRenderer())

    assert processor.trigger() is True
    await processor._sweep_task

    assert store.statuses_for(1)[-1] == JobStatus.COMPLETED
