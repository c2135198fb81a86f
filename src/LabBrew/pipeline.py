"""Run conversion jobs end-to-end.

`ConversionPipeline` takes an uploaded single image or resource pack,
processes every texture sequentially, validates the results, assembles the
output pack, and drives the job through its state machine by publishing
events to the job repository.
"""

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Tuple

from .config import (
    OUTPUT_SUFFIXES, ConversionSettings, PipelineConfig, TextureKind, TextureRole,
)
from .core.classify import classify_texture, validation_kind_for
from .core.events import Completed, Failed, FileProgressed, LogAppended, TaskStarted
from .core.paths import get_output_entry_path
from .core.records import (
    ConversionJob, IssueLevel, JobStatus, MaterialMapSet, TextureFileRecord, ValidationResult,
)
from .core.store import InMemoryJobRepository, JobRepository
from .errors import InvalidTransition, LabBrewError, PipelineCancelledError
from .phases.archive import ArchiveEntry, build_output_archive, list_entries
from .phases.depth import DepthEstimator, create_depth_estimator
from .phases.processor import TextureProcessor
from .phases.validate import ChannelValidator

logger = logging.getLogger("labpbr_pipeline")

# Step numbers reported in ProcessingStatus.current_step.
STEP_EXTRACT = 1
STEP_PROCESS = 2
STEP_PACKAGE = 4

CANCELLED_MESSAGE = "Conversion cancelled"


def validation_status(result: ValidationResult) -> str:
    """Collapse a validation result to valid / warning / error."""
    worst = result.worst_level
    if worst == IssueLevel.ERROR:
        return "error"
    if worst == IssueLevel.WARNING:
        return "warning"
    return "valid"


def file_progress(done: int, total: int) -> int:
    """Progress percentage after ``done`` of ``total`` files (10 -> 90)."""
    if total <= 0:
        return 90
    return int(10 + 80 * done / total)


class ConversionPipeline:
    """Job runner.

    Jobs are executed on a bounded thread pool; the per-file loop inside a
    job is strictly sequential. Every status change goes through the
    repository as a `JobEvent`.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        repository: Optional[JobRepository] = None,
        processor: Optional[TextureProcessor] = None,
        validator: Optional[ChannelValidator] = None,
        depth_estimator: Optional[DepthEstimator] = None,
        progress_callback: Optional[Callable[[str, int, int], None]] = None,
    ):
        self.config = config or PipelineConfig()
        self.repository = repository or InMemoryJobRepository()
        self._owned_estimator = None
        if processor is None:
            if depth_estimator is None:
                depth_estimator = create_depth_estimator(self.config)
                self._owned_estimator = depth_estimator
            processor = TextureProcessor(self.config, depth_estimator)
        self.processor = processor
        self.validator = validator or ChannelValidator(self.config.validation)
        self._progress_callback = progress_callback

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self.config.jobs.max_concurrent_jobs),
            thread_name_prefix="labbrew-job",
        )
        self._cancel_events: Dict[str, threading.Event] = {}
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    # ------------------------------------------
    # Lifecycle
    # ------------------------------------------

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)
        return False

    def shutdown(self, wait: bool = True):
        """Stop accepting jobs; optionally wait for running ones."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        if self._owned_estimator is not None:
            self._owned_estimator.close()
            self._owned_estimator = None

    # ------------------------------------------
    # Submission
    # ------------------------------------------

    def create_job(self, filename: str, settings: ConversionSettings) -> ConversionJob:
        job = self.repository.create_job(
            filename, settings, total_steps=self.config.jobs.total_steps,
        )
        with self._lock:
            self._cancel_events[job.id] = threading.Event()
        return job

    def submit(self, filename: str, data: bytes,
               settings: Optional[ConversionSettings] = None) -> str:
        """Create a pending job and schedule it; returns the job id at once."""
        job = self.create_job(filename, settings or ConversionSettings())
        future = self._executor.submit(self.run_job, job.id, data)
        with self._lock:
            self._futures[job.id] = future
        future.add_done_callback(functools.partial(self._forget_future, job.id))
        logger.info("Queued job %s (%s, %d bytes)", job.id, filename, len(data))
        return job.id

    def _forget_future(self, job_id: str, future: Future):
        with self._lock:
            if self._futures.get(job_id) is future:
                del self._futures[job_id]

    def wait(self, job_id: str, timeout: Optional[float] = None) -> ConversionJob:
        """Block until a submitted job finishes and return its final snapshot."""
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.repository.get_job(job_id)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation; returns False when the job already finished."""
        job = self.repository.get_job(job_id)
        if job.status.is_terminal:
            return False
        with self._lock:
            event = self._cancel_events.setdefault(job_id, threading.Event())
        event.set()
        logger.info("Cancellation requested for job %s", job_id)
        return True

    # ------------------------------------------
    # Execution
    # ------------------------------------------

    def _cancel_event(self, job_id: str) -> threading.Event:
        with self._lock:
            return self._cancel_events.setdefault(job_id, threading.Event())

    def _check_cancelled(self, job_id: str):
        if self._cancel_event(job_id).is_set():
            raise PipelineCancelledError(CANCELLED_MESSAGE)

    def _emit(self, job_id: str, event):
        return self.repository.apply(job_id, event)

    def _log(self, job_id: str, level: str, message: str):
        self._emit(job_id, LogAppended(level=level, message=message))

    def _report_progress(self, job_id: str, done: int, total: int):
        if self._progress_callback is None:
            return
        try:
            self._progress_callback(job_id, done, total)
        except Exception:
            logger.debug("Progress callback failed.", exc_info=True)

    def run_job(self, job_id: str, data: bytes) -> ConversionJob:
        """Run one job to a terminal state on the calling thread.

        Never raises for processing failures: they are recorded on the job
        as a `Failed` event. Partial per-file records are kept.
        """
        job = self.repository.get_job(job_id)
        try:
            self._run(job, data)
        except PipelineCancelledError as e:
            logger.info("Job %s cancelled", job_id)
            self._fail(job_id, str(e))
        except LabBrewError as e:
            logger.warning("Job %s failed: %s", job_id, e)
            self._fail(job_id, str(e))
        except Exception as e:
            logger.error("Job %s failed unexpectedly: %s", job_id, e, exc_info=True)
            self._fail(job_id, str(e) or type(e).__name__)
        finally:
            with self._lock:
                self._cancel_events.pop(job_id, None)
        return self.repository.get_job(job_id)

    def _fail(self, job_id: str, message: str):
        try:
            job = self.repository.get_job(job_id)
            if job.status == JobStatus.PENDING:
                self._emit(job_id, TaskStarted(task="Processing started"))
            self._emit(job_id, Failed(message=message))
        except InvalidTransition:
            logger.warning("Job %s already finished; dropping failure: %s", job_id, message)

    def _run(self, job: ConversionJob, data: bytes):
        job_id = job.id
        passthrough: List[ArchiveEntry] = []

        if job.is_archive:
            self._emit(job_id, TaskStarted(
                task="Extracting resource pack...", step=STEP_EXTRACT, progress=5,
            ))
            self._log(job_id, "info", "Extracting resource pack...")
            entries = list_entries(data)
            files = [(e.path, e.name, e.data) for e in entries if e.is_texture]
            passthrough = [e for e in entries if not e.is_texture]
            self._emit(job_id, TaskStarted(
                task="Processing textures...", step=STEP_PROCESS,
                progress=10, total_images=len(files),
            ))
            self._log(job_id, "success", f"Found {len(files)} texture files")
        else:
            name = PurePosixPath(job.filename.replace("\\", "/")).name or job.filename
            files = [(name, name, data)]
            self._emit(job_id, TaskStarted(
                task="Processing single image...", step=STEP_EXTRACT,
                progress=10, total_images=1,
            ))
            self._log(job_id, "info", "Processing single image...")

        outputs: List[Tuple[str, MaterialMapSet]] = []
        textures_generated = 0
        total = len(files)
        for i, (path, name, file_data) in enumerate(files):
            self._check_cancelled(job_id)
            self._emit(job_id, TaskStarted(task=f"Processing {name}...", step=STEP_PROCESS))
            self._log(job_id, "info", f"Processing {name}...")

            record, maps, carried = self._process_file(job, path, file_data)
            self.repository.add_file(record)
            if maps is not None:
                outputs.append((path, maps))
                textures_generated += maps.count
                if not maps.base_color:
                    carried = True
            if carried:
                passthrough.append(ArchiveEntry(
                    name=name, path=path, data=file_data, is_texture=True,
                ))

            if record.validation_status != "valid":
                self._log(
                    job_id, "warning",
                    f"{path}: {len(record.validation_issues)} validation issue(s)",
                )
            self._emit(job_id, FileProgressed(
                images_processed=i + 1,
                textures_generated=textures_generated,
                progress=file_progress(i + 1, total),
            ))
            self._report_progress(job_id, i + 1, total)

        self._check_cancelled(job_id)
        self._emit(job_id, TaskStarted(
            task="Creating output package...", step=STEP_PACKAGE, progress=90,
        ))
        self._log(job_id, "info", "Creating output package...")
        archive = build_output_archive(
            outputs,
            passthrough=passthrough,
            include_mcmeta=job.is_archive,
            config=self.config.archive,
        )
        self.repository.store_output(job_id, self.output_filename(job), archive)

        self._emit(job_id, Completed())
        logger.info(
            "Job %s completed: %d file(s), %d texture(s) generated",
            job_id, total, textures_generated,
        )

    def _process_file(
        self, job: ConversionJob, path: str, data: bytes,
    ) -> Tuple[TextureFileRecord, Optional[MaterialMapSet], bool]:
        """Process or validate one texture.

        Returns the per-file record, the generated maps (base textures only)
        and whether the source entry should be carried into the output.
        """
        role = classify_texture(path)
        maps = None
        carried = False
        outputs: Dict[str, bytes] = {}
        converted_path = None

        if role == TextureRole.BASE:
            maps = self.processor.process(data, job.settings).unwrap()
            if maps.specular:
                result = self.validator.validate_bytes(maps.specular, TextureKind.SPECULAR)
            else:
                result = ValidationResult()
            outputs = dict(maps.populated())
            for map_role in outputs:
                outputs_path = get_output_entry_path(path, OUTPUT_SUFFIXES[map_role])
                if converted_path is None or map_role == "specular":
                    converted_path = outputs_path
        elif role in (TextureRole.NORMAL, TextureRole.SPECULAR):
            result = self.validator.validate_bytes(
                data, validation_kind_for(role), max_pixels=self.config.max_image_pixels,
            )
            carried = True
            converted_path = path
        else:
            # Emission and height entries are already LabPBR maps.
            result = ValidationResult()
            carried = True
            converted_path = path

        record = TextureFileRecord(
            id=f"{job.id}:{path}",
            job_id=job.id,
            original_path=path,
            texture_type=role.value,
            validation_status=validation_status(result),
            validation_issues=result.issues,
            converted_path=converted_path,
            outputs=outputs,
        )
        logger.debug("Processed %s as %s: %s", path, role.value, record.validation_status)
        return record, maps, carried

    def output_filename(self, job: ConversionJob) -> str:
        stem = PurePosixPath(job.filename.replace("\\", "/")).stem or "output"
        return f"{stem}{self.config.archive.download_suffix}.zip"
