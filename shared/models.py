from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.enums import ArtifactKind, JobStatus


# Job store models
class Job(BaseModel):
    """Unit of work leased from the external job store."""

    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    id: str | int
    asset_id: str
    status: JobStatus = JobStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    upload_urls: dict[str, str | None] = Field(
        default_factory=dict, description="Pre-signed PUT URL per artifact kind"
    )
    upload_token: str | None = Field(None, description="Optional per-job token")
    error: str | None = None

    @field_validator("attempts", mode="before")
    @classmethod
    def _attempts_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("max_attempts", mode="before")
    @classmethod
    def _max_attempts_default(cls, value: Any) -> Any:
        return value or 3

    @field_validator("upload_urls", mode="before")
    @classmethod
    def _upload_urls_default(cls, value: Any) -> Any:
        return value or {}

    def upload_url_for(self, kind: ArtifactKind) -> str | None:
        """Return the pre-signed URL for an artifact kind, if one was supplied."""
        url = self.upload_urls.get(kind.value)
        return url or None

    def has_upload_urls(self) -> bool:
        return any(self.upload_url_for(kind) for kind in ArtifactKind)

    @property
    def exhausted(self) -> bool:
        """True once the job has used up its attempts."""
        return self.attempts >= self.max_attempts


class Asset(BaseModel):
    """Source creative record, as far as derivative generation cares."""

    model_config = ConfigDict(extra="allow")

    asset_id: str = ""
    title: str | None = None
    description: str | None = None
    slug: str | None = None


class AssetPayload(BaseModel):
    """Response body of the internal asset endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    asset: Asset
    svg_content: str | None = Field(None, alias="svgContent")


class PendingJobsPayload(BaseModel):
    """Envelope of the pending-jobs endpoint. Records stay raw so each job validates on its own."""

    jobs: list[Any] = Field(default_factory=list)

    @field_validator("jobs", mode="before")
    @classmethod
    def _jobs_default(cls, value: Any) -> Any:
        return value or []


class StatusUpdate(BaseModel):
    status: JobStatus
    error: str | None = None


# HTTP surface models
class AsyncUploadFields(BaseModel):
    """Optional fields that switch an endpoint to accept-then-upload mode."""

    model_config = ConfigDict(populate_by_name=True)

    upload_url: str | None = Field(None, alias="uploadUrl", description="Upload endpoint on the API")
    upload_token: str | None = Field(None, alias="uploadToken", description="Bearer token for the upload endpoint")
    upload_key: str | None = Field(None, alias="uploadKey", description="Storage key of the derivative")

    def wants_async_upload(self) -> bool:
        return bool(self.upload_url and self.upload_token and self.upload_key)


class ThumbnailRequest(AsyncUploadFields):
    svg_content: str | None = Field(None, alias="svgContent")
    width: int | None = Field(None, gt=0, le=4096, description="Square edge length in pixels")
    asset_id: str | None = Field(None, alias="assetId")


class OgImageRequest(AsyncUploadFields):
    title: str | None = None
    svg_content: str | None = Field(None, alias="svgContent")
    thumbnail_base64: str | None = Field(None, alias="thumbnailBase64")
    thumbnail_mime_type: str | None = Field(None, alias="thumbnailMimeType")


class PdfMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    asset_id: str | None = Field(None, alias="assetId")
    title: str | None = None
    description: str | None = None


class PdfRequest(AsyncUploadFields):
    svg_content: str | None = Field(None, alias="svgContent")
    filename: str | None = None
    metadata: PdfMetadata | None = None


class ImageResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(..., alias="imageBase64")
    mime_type: str = Field(..., alias="mimeType")


class PdfResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pdf_base64: str = Field(..., alias="pdfBase64")
    mime_type: str = Field(default="application/pdf", alias="mimeType")
    filename: str = "document.pdf"


class JobOutcome(BaseModel):
    """Result of one job execution inside a sweep (used for logging and tests)."""

    job_id: str | int
    status: JobStatus
    error: str | None = None
    uploaded: dict[str, int] = Field(default_factory=dict, description="Artifact kind to byte size")
    details: dict[str, Any] = Field(default_factory=dict)
