"""Job repository interface and its in-process binding."""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..config import ConversionSettings
from ..errors import JobNotFound
from .events import JobEvent, apply_event
from .records import (
    ConversionJob, JobStatus, ProcessingStatus, TextureFileRecord,
)

logger = logging.getLogger("labpbr_pipeline.store")


class JobRepository(ABC):
    """Persistence boundary for jobs, their status, per-file records and output."""

    @abstractmethod
    def create_job(self, filename: str, settings: ConversionSettings,
                   total_steps: int = 5) -> ConversionJob:
        """Create a pending job and its initial processing status."""

    @abstractmethod
    def get_job(self, job_id: str) -> ConversionJob:
        """Return a job snapshot or raise JobNotFound."""

    @abstractmethod
    def list_jobs(self) -> List[ConversionJob]:
        """Return all jobs, oldest first."""

    @abstractmethod
    def get_status(self, job_id: str) -> ProcessingStatus:
        """Return a status snapshot or raise JobNotFound."""

    @abstractmethod
    def apply(self, job_id: str, event: JobEvent) -> Tuple[ConversionJob, ProcessingStatus]:
        """Apply one event under the job's single-writer lock."""

    @abstractmethod
    def add_file(self, record: TextureFileRecord) -> None:
        """Persist a per-file record."""

    @abstractmethod
    def list_files(self, job_id: str) -> List[TextureFileRecord]:
        """Return per-file records for a job in insertion order."""

    @abstractmethod
    def store_output(self, job_id: str, filename: str, data: bytes) -> None:
        """Persist the assembled output archive for a job."""

    @abstractmethod
    def get_output(self, job_id: str) -> Optional[Tuple[str, bytes]]:
        """Return (filename, bytes) of the output archive, if any."""


@dataclass
class _JobSlot:
    job: ConversionJob
    status: ProcessingStatus
    lock: threading.Lock = field(default_factory=threading.Lock)
    files: List[TextureFileRecord] = field(default_factory=list)
    output: Optional[Tuple[str, bytes]] = None
    started_at: Optional[float] = None


class InMemoryJobRepository(JobRepository):
    """Per-process repository.

    A registry lock guards the id -> slot index; each slot carries its own
    lock so writers for different jobs never contend.
    """

    def __init__(self):
        self._slots: Dict[str, _JobSlot] = {}
        self._registry_lock = threading.Lock()

    def _slot(self, job_id: str) -> _JobSlot:
        with self._registry_lock:
            slot = self._slots.get(job_id)
        if slot is None:
            raise JobNotFound(job_id)
        return slot

    def create_job(self, filename, settings, total_steps=5):
        job = ConversionJob(id=str(uuid.uuid4()), filename=filename, settings=settings)
        slot = _JobSlot(job=job, status=ProcessingStatus(total_steps=total_steps))
        with self._registry_lock:
            self._slots[job.id] = slot
        logger.debug("Created job %s for %s", job.id, filename)
        return job

    def get_job(self, job_id):
        slot = self._slot(job_id)
        with slot.lock:
            return slot.job

    def list_jobs(self):
        with self._registry_lock:
            slots = list(self._slots.values())
        jobs = []
        for slot in slots:
            with slot.lock:
                jobs.append(slot.job)
        return sorted(jobs, key=lambda j: j.created_at)

    def get_status(self, job_id):
        slot = self._slot(job_id)
        with slot.lock:
            return slot.status

    def apply(self, job_id, event):
        slot = self._slot(job_id)
        with slot.lock:
            elapsed_ms = None
            if slot.started_at is not None:
                elapsed_ms = int((time.monotonic() - slot.started_at) * 1000)
            job, status = apply_event(slot.job, slot.status, event, elapsed_ms)
            if slot.started_at is None and job.status == JobStatus.PROCESSING:
                slot.started_at = time.monotonic()
            slot.job, slot.status = job, status
            return job, status

    def add_file(self, record):
        slot = self._slot(record.job_id)
        with slot.lock:
            slot.files.append(record)

    def list_files(self, job_id):
        slot = self._slot(job_id)
        with slot.lock:
            return list(slot.files)

    def store_output(self, job_id, filename, data):
        slot = self._slot(job_id)
        with slot.lock:
            slot.output = (filename, data)

    def get_output(self, job_id):
        slot = self._slot(job_id)
        with slot.lock:
            return slot.output
