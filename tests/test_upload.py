"""Tests for pre-signed uploads."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from services.derivatives.upload import UploadClient, validate_upload_url
from shared.config import config as service_config
from shared.enums import ArtifactKind
from shared.errors import UpstreamStatusError, ValidationError
from shared.http_client import HTTPResponse

SIGNED_URL = "https://storage.example.com/thumb.webp?X-Amz-Signature=abc&X-Amz-Expires=600"


def _http(status: int = 200) -> MagicMock:
    http = MagicMock()
    http.put = AsyncMock(return_value=HTTPResponse(status=status, url=SIGNED_URL))
    return http


@pytest.mark.asyncio
async def test_upload_sets_content_type_headers() -> None:
    http = _http()
    await UploadClient(http).upload_artifact(SIGNED_URL, ArtifactKind.THUMBNAIL, b"webp-bytes")

    http.put.assert_awaited_once()
    args, kwargs = http.put.await_args
    assert args == (SIGNED_URL,)
    assert kwargs["data"] == b"webp-bytes"
    assert kwargs["headers"]["X-Content-Type"] == "image/webp"
    assert kwargs["headers"]["Content-Type"] == "image/webp"


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(ArtifactKind))
async def test_upload_never_sends_authorization(kind: ArtifactKind) -> None:
    http = _http()
    await UploadClient(http).upload_artifact(SIGNED_URL, kind, b"data")

    headers = http.put.await_args.kwargs["headers"]
    assert "Authorization" not in {key.title() for key in headers}
    assert headers["X-Content-Type"] == kind.mime_type


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [301, 403, 500])
async def test_non_2xx_raises(status: int) -> None:
    with pytest.raises(UpstreamStatusError) as exc_info:
        await UploadClient(_http(status)).upload(SIGNED_URL, b"data", "application/pdf")

    assert exc_info.value.status == status
    assert str(status) in str(exc_info.value)


class TestUploadUrlAllowList:
    def test_missing_url_is_allowed(self) -> None:
        validate_upload_url(None)
        validate_upload_url("")

    def test_api_prefix_allowed(self) -> None:
        validate_upload_url("https://api.huepress.co/api/internal/upload")

    @pytest.mark.parametrize(
        "url",
        ["http://169.254.169.254/latest/meta-data", "https://api.huepress.co.evil.com/x", "https://evil.example/up"],
    )
    def test_foreign_hosts_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError, match="Upload URL not allowed"):
            validate_upload_url(url)

    def test_localhost_only_outside_production(self) -> None:
        validate_upload_url("http://localhost:8787/upload")

        service_config.set("environment", "production")
        with pytest.raises(ValidationError):
            validate_upload_url("http://localhost:8787/upload")

    def test_prefixes_from_pipeline_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PIPELINE_FLAG_UPLOADS_ALLOWED_PREFIXES", "https://a.test/, https://b.test/")

        validate_upload_url("https://b.test/upload")
        with pytest.raises(ValidationError):
            validate_upload_url("https://api.huepress.co/upload")


@pytest.mark.asyncio
async def test_keyed_upload_uses_bearer_and_key() -> None:
    http = _http()
    await UploadClient(http).upload_keyed(
        "https://api.huepress.co/api/internal/upload",
        "pdfs/HP ANI/0067.pdf",
        "up-token",
        b"%PDF",
        "application/pdf",
        filename="cozy.pdf",
    )

    args, kwargs = http.put.await_args
    assert args == ("https://api.huepress.co/api/internal/upload?key=pdfs%2FHP%20ANI%2F0067.pdf",)
    assert kwargs["headers"] == {
        "Authorization": "Bearer up-token",
        "X-Content-Type": "application/pdf",
        "X-Filename": "cozy.pdf",
    }


@pytest.mark.asyncio
async def test_keyed_upload_rejects_foreign_url() -> None:
    http = _http()
    with pytest.raises(ValidationError):
        await UploadClient(http).upload_keyed("https://evil.example/up", "k", "t", b"x", "image/png")
    http.put.assert_not_awaited()


@pytest.mark.asyncio
async def test_keyed_upload_non_2xx_raises() -> None:
    with pytest.raises(UpstreamStatusError):
        await UploadClient(_http(502)).upload_keyed(
            "https://api.huepress.co/api/internal/upload", "k", "t", b"x", "image/png"
        )
