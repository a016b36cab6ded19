"""
Enums and constants used across the processing service.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle states of a derivative job in the external job store."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ArtifactKind(str, Enum):
    """Derivative artifacts produced for every asset."""

    THUMBNAIL = "thumbnail"
    OG = "og"
    PDF = "pdf"

    @property
    def mime_type(self) -> str:
        return ARTIFACT_MIME_TYPES[self]


ARTIFACT_MIME_TYPES = {
    ArtifactKind.THUMBNAIL: "image/webp",
    ArtifactKind.OG: "image/png",
    ArtifactKind.PDF: "application/pdf",
}

# Fixed generation order inside a job
ARTIFACT_ORDER = (ArtifactKind.THUMBNAIL, ArtifactKind.OG, ArtifactKind.PDF)
