"""Derivative service implementation."""

from __future__ import annotations

import asyncio
import base64
import binascii
from typing import Any, Awaitable, Callable

from services.derivatives import generators
from services.derivatives.sanitizer import sanitize_svg_content
from services.derivatives.upload import UploadClient
from shared.config import config
from shared.enums import ArtifactKind
from shared.errors import ValidationError
from shared.http_client import AsyncHTTPClient
from shared.logging_utils import setup_logging
from shared.models import (
    Asset,
    AsyncUploadFields,
    ImageResponse,
    OgImageRequest,
    PdfRequest,
    PdfResponse,
    ThumbnailRequest,
)

DEFAULT_API_THUMBNAIL_WIDTH = 1024
DEFAULT_PDF_FILENAME = "document.pdf"


class DerivativeService:
    """Async facade over the generators; CPU-bound rendering runs in a worker thread."""

    def __init__(self) -> None:
        self.logger = setup_logging("derivative-service")

    @staticmethod
    def validate(svg_content: str) -> str:
        """Fail early on input no generator would accept."""
        return sanitize_svg_content(svg_content)

    async def render_thumbnail(self, svg_content: str, asset_id: str | None, size: int = 600) -> bytes:
        return await asyncio.to_thread(generators.generate_thumbnail, svg_content, asset_id, size)

    async def render_og_image(
        self,
        svg_content: str | None,
        title: str | None,
        art_image: bytes | None = None,
    ) -> bytes:
        return await asyncio.to_thread(generators.generate_og_image, svg_content, title, art_image)

    async def render_pdf(
        self,
        svg_content: str,
        asset: Asset | dict[str, Any],
        public_url: str | None = None,
    ) -> bytes:
        return await asyncio.to_thread(generators.generate_pdf, svg_content, asset, public_url)

    async def render_artifact(self, kind: ArtifactKind, svg_content: str, asset: Asset) -> bytes:
        """Render one artifact of a job, in the layout the job pipeline uses."""
        if kind is ArtifactKind.THUMBNAIL:
            size = int(config.get_pipeline_value("derivatives.thumbnail.size", generators.DEFAULT_THUMBNAIL_SIZE))
            return await self.render_thumbnail(svg_content, asset.asset_id, size)
        if kind is ArtifactKind.OG:
            return await self.render_og_image(svg_content, asset.title)
        return await self.render_pdf(svg_content, asset)

    # HTTP surface helpers

    async def thumbnail_buffer(self, request: ThumbnailRequest) -> bytes:
        width = request.width or DEFAULT_API_THUMBNAIL_WIDTH
        self.logger.info("Generating thumbnail (width: %s)", width)
        return await self.render_thumbnail(request.svg_content or "", request.asset_id or "", width)

    async def og_image_buffer(self, request: OgImageRequest) -> bytes:
        art_image = None
        if not request.svg_content and request.thumbnail_base64:
            try:
                art_image = base64.b64decode(request.thumbnail_base64, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValidationError(f"Invalid thumbnailBase64: {exc}") from exc
        return await self.render_og_image(request.svg_content, request.title, art_image)

    async def pdf_buffer(self, request: PdfRequest) -> bytes:
        metadata = request.metadata
        asset = Asset(
            asset_id=(metadata.asset_id if metadata and metadata.asset_id else "UNKNOWN"),
            title=metadata.title if metadata else None,
            description=metadata.description if metadata else None,
        )
        return await self.render_pdf(request.svg_content or "", asset)

    async def thumbnail_response(self, request: ThumbnailRequest) -> ImageResponse:
        buffer = await self.thumbnail_buffer(request)
        return ImageResponse(
            image_base64=base64.b64encode(buffer).decode("ascii"),
            mime_type=ArtifactKind.THUMBNAIL.mime_type,
        )

    async def og_image_response(self, request: OgImageRequest) -> ImageResponse:
        buffer = await self.og_image_buffer(request)
        return ImageResponse(
            image_base64=base64.b64encode(buffer).decode("ascii"),
            mime_type=ArtifactKind.OG.mime_type,
        )

    async def pdf_response(self, request: PdfRequest) -> PdfResponse:
        buffer = await self.pdf_buffer(request)
        return PdfResponse(
            pdf_base64=base64.b64encode(buffer).decode("ascii"),
            filename=request.filename or DEFAULT_PDF_FILENAME,
        )

    async def render_and_upload(
        self,
        kind: ArtifactKind,
        render: Callable[[], Awaitable[bytes]],
        request: AsyncUploadFields,
        filename: str | None = None,
    ) -> None:
        """
        Background half of accept-then-upload requests.

        The client already got its 202, so failures are logged rather than raised.
        """
        try:
            buffer = await render()
            async with AsyncHTTPClient(timeout=float(config.get("http_timeout", 60))) as http_client:
                await UploadClient(http_client).upload_keyed(
                    request.upload_url or "",
                    request.upload_key or "",
                    request.upload_token or "",
                    buffer,
                    kind.mime_type,
                    filename=filename,
                )
            self.logger.info("Async %s upload success: %s", kind.value, request.upload_key)
        except Exception as exc:
            self.logger.error("Async %s error: %s", kind.value, exc, exc_info=True)
