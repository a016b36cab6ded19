"""Delivery of finished derivative buffers to storage."""

from urllib.parse import quote

from shared.config import config
from shared.enums import ArtifactKind
from shared.errors import UpstreamStatusError, ValidationError
from shared.http_client import AsyncHTTPClient, HTTPResponse
from shared.logging_utils import setup_logging

logger = setup_logging("derivative-upload")

DEFAULT_ALLOWED_PREFIXES = ("https://api.huepress.co/",)
DEV_PREFIX = "http://localhost:"


def allowed_upload_prefixes() -> list[str]:
    prefixes = config.get_pipeline_value("uploads.allowed_prefixes", list(DEFAULT_ALLOWED_PREFIXES))
    if isinstance(prefixes, str):
        prefixes = [prefix.strip() for prefix in prefixes.split(",") if prefix.strip()]
    prefixes = list(prefixes)
    if not config.is_production:
        prefixes.append(DEV_PREFIX)
    return prefixes


def validate_upload_url(url: str | None) -> None:
    """
    Refuse upload targets outside the allow-list.

    Raises:
        ValidationError: the URL does not start with an allowed prefix
    """
    if not url:
        return
    if not any(url.startswith(prefix) for prefix in allowed_upload_prefixes()):
        raise ValidationError(f"Upload URL not allowed: {url}")


class UploadClient:
    """
    PUTs finished buffers to storage.

    Pre-signed targets carry signature and expiry in the query string and never
    get an Authorization header. Keyed uploads go to the API's upload endpoint
    with the bearer token the caller supplied.
    """

    def __init__(self, http_client: AsyncHTTPClient) -> None:
        self.http_client = http_client

    @staticmethod
    def build_headers(content_type: str) -> dict[str, str]:
        return {"Content-Type": content_type, "X-Content-Type": content_type}

    async def upload(self, url: str, buffer: bytes, content_type: str) -> HTTPResponse:
        """
        Upload one buffer.

        Raises:
            UpstreamStatusError: the target answered with a non-2xx status
            TransportError: every attempt failed before a response arrived
        """
        response = await self.http_client.put(url, data=buffer, headers=self.build_headers(content_type))
        if not response.ok:
            raise UpstreamStatusError(f"Upload failed: {response.status}", status=response.status, url=url)
        logger.debug("Uploaded %s bytes (%s)", len(buffer), content_type)
        return response

    async def upload_artifact(self, url: str, kind: ArtifactKind, buffer: bytes) -> HTTPResponse:
        return await self.upload(url, buffer, kind.mime_type)

    async def upload_keyed(
        self,
        url: str,
        key: str,
        token: str,
        buffer: bytes,
        content_type: str,
        filename: str | None = None,
    ) -> HTTPResponse:
        """
        Upload through the API's own upload endpoint, addressed by storage key.

        Unlike pre-signed targets this endpoint authenticates with a bearer token.

        Raises:
            UpstreamStatusError: the endpoint answered with a non-2xx status
        """
        validate_upload_url(url)
        target = f"{url}?key={quote(key, safe='')}"
        headers = {"Authorization": f"Bearer {token}", "X-Content-Type": content_type}
        if filename:
            headers["X-Filename"] = filename
        response = await self.http_client.put(target, data=buffer, headers=headers)
        if not response.ok:
            raise UpstreamStatusError(f"Upload failed: {response.status}", status=response.status, url=url)
        logger.info("Uploaded %s (%s bytes)", key, len(buffer))
        return response
