"""In-process API for the conversion service.

`LabBrewService` is what the HTTP adapter and the CLI talk to. It checks
uploads, parses settings, and routes pixel work for ad-hoc validation and
analysis onto a dedicated worker pool.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

from .config import ConversionSettings, PipelineConfig
from .core.classify import classify_texture, validation_kind_for
from .core.records import (
    ConversionJob, IssueLevel, JobStatus, ProcessingStatus, TextureFileRecord,
)
from .errors import ConversionNotCompleted, UploadError
from .phases.analyze import MaterialReport, analyze_specular
from .phases.archive import list_entries
from .phases.validate import SPEC_VERSION, ChannelValidator
from .pipeline import ConversionPipeline

logger = logging.getLogger("labpbr_pipeline.service")


def _basename(filename: str) -> str:
    return PurePosixPath(str(filename).replace("\\", "/")).name


class LabBrewService:
    """Facade over the job runner, validator and analyzer."""

    def __init__(self, config: Optional[PipelineConfig] = None,
                 pipeline: Optional[ConversionPipeline] = None):
        self.config = config or (pipeline.config if pipeline else PipelineConfig())
        self.pipeline = pipeline or ConversionPipeline(self.config)
        self.repository = self.pipeline.repository
        self.validator = ChannelValidator(self.config.validation)
        self._pixel_pool = ThreadPoolExecutor(
            max_workers=max(1, self.config.jobs.pixel_workers),
            thread_name_prefix="labbrew-pixels",
        )

    def close(self):
        self._pixel_pool.shutdown(wait=True)
        self.pipeline.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _check_upload(self, filename: Optional[str], data: Optional[bytes]):
        if not filename or data is None:
            raise UploadError("No file uploaded")
        if len(data) == 0:
            raise UploadError("Empty file uploaded")
        if len(data) > self.config.max_upload_bytes:
            raise UploadError(
                f"File too large ({len(data)} bytes, limit {self.config.max_upload_bytes})"
            )

    # ------------------------------------------
    # Jobs
    # ------------------------------------------

    def submit(self, filename: Optional[str], data: Optional[bytes],
               settings: Union[ConversionSettings, dict, None] = None) -> str:
        """Validate an upload and queue a conversion job; returns the job id.

        Raises UploadError or SettingsError without creating a job.
        """
        self._check_upload(filename, data)
        if not isinstance(settings, ConversionSettings):
            settings = ConversionSettings.from_dict(settings)
        return self.pipeline.submit(_basename(filename), bytes(data), settings)

    def list_jobs(self) -> List[ConversionJob]:
        return self.repository.list_jobs()

    def get_job(self, job_id: str) -> ConversionJob:
        return self.repository.get_job(job_id)

    def get_status(self, job_id: str) -> ProcessingStatus:
        return self.repository.get_status(job_id)

    def list_files(self, job_id: str) -> List[TextureFileRecord]:
        return self.repository.list_files(job_id)

    def download(self, job_id: str) -> Tuple[str, bytes]:
        """Return (filename, archive bytes) of a completed job."""
        job = self.repository.get_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise ConversionNotCompleted()
        output = self.repository.get_output(job_id)
        if output is None:
            raise ConversionNotCompleted()
        return output

    def cancel(self, job_id: str) -> bool:
        return self.pipeline.cancel(job_id)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> ConversionJob:
        return self.pipeline.wait(job_id, timeout=timeout)

    # ------------------------------------------
    # Ad-hoc validation and analysis
    # ------------------------------------------

    def _validate_one(self, path: str, data: bytes) -> dict:
        kind = validation_kind_for(classify_texture(path))
        result = self.validator.validate_bytes(
            data, kind, max_pixels=self.config.max_image_pixels,
        )
        return {
            "filename": _basename(path),
            "path": path,
            "kind": kind.value,
            "validation": result.to_dict(),
            "size": len(data),
        }

    def validate_upload(self, filename: Optional[str], data: Optional[bytes]) -> dict:
        """Validate a single texture or every texture of a resource pack."""
        self._check_upload(filename, data)
        name = _basename(filename)
        if name.lower().endswith(".zip"):
            entries = list_entries(bytes(data))
            textures = [e for e in entries if e.is_texture]
            futures = [
                self._pixel_pool.submit(self._validate_one, e.path, e.data)
                for e in textures
            ]
            details = [f.result() for f in futures]
            total_files = len(entries)
        else:
            details = [self._pixel_pool.submit(self._validate_one, name, bytes(data)).result()]
            total_files = 1

        issues = []
        for detail in details:
            for issue in detail["validation"]["issues"]:
                issues.append({**issue, "filename": detail["filename"], "path": detail["path"]})
        is_valid = not any(i["level"] == IssueLevel.ERROR.value for i in issues)
        logger.info(
            "Validated %s: %d texture(s), %d issue(s), valid=%s",
            name, len(details), len(issues), is_valid,
        )
        return {
            "isValid": is_valid,
            "issues": issues,
            "version": SPEC_VERSION,
            "totalFiles": total_files,
            "textureFiles": len(details),
            "fileDetails": details,
        }

    def analyze(self, data: Optional[bytes]) -> MaterialReport:
        """Run the material analyzer on a specular texture."""
        if not data:
            raise UploadError("No file uploaded" if data is None else "Empty file uploaded")
        return self._pixel_pool.submit(analyze_specular, bytes(data)).result()
