"""Exception hierarchy shared by the conversion pipeline and its adapters."""


class LabBrewError(RuntimeError):
    """Base class for all errors raised by the conversion pipeline."""


class UploadError(LabBrewError):
    """Raised when an upload is missing or empty; no job is created."""


class SettingsError(LabBrewError, ValueError):
    """Raised when a settings record violates the conversion schema."""

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__(
            "Invalid conversion settings:\n"
            + "\n".join(f"  - {p}" for p in self.problems)
        )


class DecodeError(LabBrewError):
    """Raised when bytes cannot be decoded into a pixel buffer."""


class InvalidDimensions(DecodeError):
    """Raised when a source image has no usable width or height."""


class DepthUnavailable(LabBrewError):
    """Raised when the depth service exhausted retries or sent a bad payload."""


class ProcessingError(LabBrewError):
    """Raised for any other failure inside a job's pipeline."""


class PipelineCancelledError(ProcessingError):
    """Raised when a job is cancelled between files."""


class JobNotFound(LabBrewError, KeyError):
    """Raised when a job id is unknown to the repository."""

    def __str__(self):
        return f"Job not found: {self.args[0]}" if self.args else "Job not found"


class InvalidTransition(LabBrewError):
    """Raised on an illegal job status transition."""


class ConversionNotCompleted(LabBrewError):
    """Raised when a download is requested for a job that has not completed."""

    def __init__(self, message: str = "Conversion not completed"):
        super().__init__(message)
