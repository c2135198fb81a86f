"""Job events and the deterministic fold that applies them.

Every change to a job or its processing status is expressed as one of the
event dataclasses below and applied with `apply_event`. The fold is pure:
it returns new records and never mutates its inputs.

State machine::

    pending --TaskStarted--> processing --Completed--> completed
                             processing --Failed-----> failed

Nothing leaves a terminal state.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union

from ..errors import InvalidTransition
from .records import (
    ConversionJob, JobStatus, ProcessingLog, ProcessingStatus, utc_now_iso,
)


@dataclass(frozen=True)
class TaskStarted:
    task: str
    step: Optional[int] = None
    progress: Optional[int] = None
    total_images: Optional[int] = None


@dataclass(frozen=True)
class FileProgressed:
    images_processed: int
    textures_generated: int
    progress: int


@dataclass(frozen=True)
class LogAppended:
    level: str
    message: str
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class Completed:
    message: str = "Processing completed successfully"
    timestamp: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class Failed:
    message: str
    timestamp: str = field(default_factory=utc_now_iso)


JobEvent = Union[TaskStarted, FileProgressed, LogAppended, Completed, Failed]

_LOG_LEVELS = {"info", "success", "warning", "error"}


def _clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def _require(job: ConversionJob, event, *allowed: JobStatus):
    if job.status not in allowed:
        raise InvalidTransition(
            f"Cannot apply {type(event).__name__} to job {job.id} "
            f"in status '{job.status.value}'"
        )


def apply_event(
    job: ConversionJob,
    status: ProcessingStatus,
    event: JobEvent,
    elapsed_ms: Optional[int] = None,
) -> Tuple[ConversionJob, ProcessingStatus]:
    """Fold one event into (job, status) and return the new pair."""
    if elapsed_ms is not None:
        status = replace(status, elapsed_time=max(0, int(elapsed_ms)))

    if isinstance(event, TaskStarted):
        _require(job, event, JobStatus.PENDING, JobStatus.PROCESSING)
        if job.status == JobStatus.PENDING:
            job = replace(job, status=JobStatus.PROCESSING)
        changes = {"current_task": event.task}
        if event.step is not None:
            changes["current_step"] = event.step
        if event.total_images is not None:
            changes["total_images"] = event.total_images
        if event.progress is not None:
            changes["progress"] = _clamp_progress(event.progress)
            job = replace(job, progress=changes["progress"])
        return job, replace(status, **changes)

    if isinstance(event, FileProgressed):
        _require(job, event, JobStatus.PROCESSING)
        progress = _clamp_progress(event.progress)
        job = replace(job, progress=progress)
        return job, replace(
            status,
            images_processed=event.images_processed,
            textures_generated=event.textures_generated,
            progress=progress,
        )

    if isinstance(event, LogAppended):
        _require(job, event, JobStatus.PENDING, JobStatus.PROCESSING)
        if event.level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level: {event.level!r}")
        entry = ProcessingLog(event.timestamp, event.level, event.message)
        if event.level == "warning":
            job = replace(job, warnings=job.warnings + (event.message,))
        return job, replace(status, logs=status.logs + (entry,))

    if isinstance(event, Completed):
        _require(job, event, JobStatus.PROCESSING)
        job = replace(
            job, status=JobStatus.COMPLETED, progress=100,
            completed_at=event.timestamp,
        )
        entry = ProcessingLog(event.timestamp, "success", event.message)
        return job, replace(
            status,
            current_task="Complete!",
            current_step=status.total_steps,
            progress=100,
            logs=status.logs + (entry,),
        )

    if isinstance(event, Failed):
        _require(job, event, JobStatus.PROCESSING)
        job = replace(
            job, status=JobStatus.FAILED, errors=job.errors + (event.message,),
        )
        entry = ProcessingLog(event.timestamp, "error", f"Processing failed: {event.message}")
        return job, replace(
            status,
            current_task="Failed",
            logs=status.logs + (entry,),
        )

    raise TypeError(f"Unsupported job event: {event!r}")
