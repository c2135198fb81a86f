"""Record dataclasses for jobs, per-file results, and validation output.

All records are frozen. Job state advances by building new records (see
`core.events.apply_event`), so a snapshot handed to a reader never changes
underneath it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple

from ..config import ConversionSettings


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with a Z suffix."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class IssueLevel(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


_LEVEL_RANK = {IssueLevel.INFO: 0, IssueLevel.WARNING: 1, IssueLevel.ERROR: 2}


@dataclass(frozen=True)
class ValidationIssue:
    """Single finding from the channel validator."""

    level: IssueLevel
    message: str
    channel: Optional[str] = None
    value: Optional[int] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> dict:
        out = {"level": self.level.value, "message": self.message}
        for key in ("channel", "value", "suggestion"):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        return out


@dataclass(frozen=True)
class ValidationResult:
    """Issues found in one validated buffer; validity is derived from them."""

    issues: Tuple[ValidationIssue, ...] = ()
    spec_version: str = "1.3"

    @property
    def is_valid(self) -> bool:
        return not any(i.level == IssueLevel.ERROR for i in self.issues)

    @property
    def worst_level(self) -> Optional[IssueLevel]:
        if not self.issues:
            return None
        return max((i.level for i in self.issues), key=_LEVEL_RANK.__getitem__)

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "issues": [i.to_dict() for i in self.issues],
            "version": self.spec_version,
        }


@dataclass(frozen=True)
class MaterialMapSet:
    """Encoded PNG maps produced for one source image.

    Maps that were not requested are empty ``bytes``, never None.
    """

    base_color: bytes = b""
    normal: bytes = b""
    specular: bytes = b""
    height: bytes = b""
    ao: bytes = b""

    def populated(self) -> Iterator[Tuple[str, bytes]]:
        """Yield (role, data) for every non-empty map."""
        for role in ("base_color", "normal", "specular", "height", "ao"):
            data = getattr(self, role)
            if data:
                yield role, data

    @property
    def count(self) -> int:
        return sum(1 for _ in self.populated())


@dataclass(frozen=True)
class ProcessingLog:
    timestamp: str
    level: str  # info | success | warning | error
    message: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "level": self.level, "message": self.message}


@dataclass(frozen=True)
class ProcessingStatus:
    """Progress snapshot polled by clients; ``logs`` only ever grows."""

    current_task: str = "Initializing..."
    progress: int = 0
    current_step: int = 0
    total_steps: int = 5
    images_processed: int = 0
    total_images: int = 0
    textures_generated: int = 0
    elapsed_time: int = 0
    logs: Tuple[ProcessingLog, ...] = ()

    def to_dict(self) -> dict:
        return {
            "currentTask": self.current_task,
            "progress": self.progress,
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "imagesProcessed": self.images_processed,
            "totalImages": self.total_images,
            "texturesGenerated": self.textures_generated,
            "elapsedTime": self.elapsed_time,
            "logs": [entry.to_dict() for entry in self.logs],
        }


@dataclass(frozen=True)
class ConversionJob:
    id: str
    filename: str
    settings: ConversionSettings = field(default_factory=ConversionSettings)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    errors: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    created_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None

    @property
    def is_archive(self) -> bool:
        return self.filename.lower().endswith(".zip")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "settings": self.settings.to_dict(),
            "progress": self.progress,
            "errors": [{"message": m} for m in self.errors],
            "warnings": [{"message": m} for m in self.warnings],
            "createdAt": self.created_at,
            "completedAt": self.completed_at,
        }


@dataclass(frozen=True)
class TextureFileRecord:
    """Per-file outcome persisted while a job runs."""

    id: str
    job_id: str
    original_path: str
    texture_type: str
    validation_status: str  # valid | warning | error
    validation_issues: Tuple[ValidationIssue, ...] = ()
    converted_path: Optional[str] = None
    outputs: Dict[str, bytes] = field(default_factory=dict, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "jobId": self.job_id,
            "originalPath": self.original_path,
            "textureType": self.texture_type,
            "validationStatus": self.validation_status,
            "validationIssues": [i.to_dict() for i in self.validation_issues],
            "convertedPath": self.converted_path,
            "outputs": sorted(self.outputs),
        }
