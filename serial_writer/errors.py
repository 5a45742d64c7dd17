"""Typed errors passed between the layers of the generation pipeline."""


class SerialWriterError(Exception):
    """Base class for every error raised by serial_writer."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class GenerationError(SerialWriterError):
    """Something went wrong talking to the text-generation backend."""


class TransientGenerationError(GenerationError):
    """Rate-limited, unavailable, network or timeout failure. Retried by the client."""

    def __init__(self, message: str, status_code: int | None = None, throttled: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.throttled = throttled


class RetryExhaustedError(GenerationError):
    """The retry budget ran out on transient failures."""

    def __init__(self, message: str, attempts: int = 0, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class InvalidInputError(GenerationError):
    """The backend rejected the request itself. Never retried."""


class ContentBlockedError(GenerationError):
    """The backend refused to produce content for the prompt. Never retried."""


class ConfigurationError(SerialWriterError):
    """Missing credential, unknown model or invalid setting. Fatal at startup."""


class QuotaExceededError(ConfigurationError):
    """The account quota is used up; retrying cannot help."""


class InvalidOutlineError(SerialWriterError):
    """The Architect output could not be turned into an outline."""


class QualityRejection(SerialWriterError):
    """Every attempt was declined by the quality gate or the critic."""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class DuplicateCommitError(SerialWriterError):
    """A chapter with this number is already committed for the project."""

    def __init__(self, project_id: str, chapter_number: int):
        super().__init__(f"Chapter {chapter_number} already committed for project '{project_id}'")
        self.project_id = project_id
        self.chapter_number = chapter_number


class PersistenceError(SerialWriterError):
    """The store failed to read or write an entity."""


class ProjectBusyError(SerialWriterError):
    """Another chapter run already holds the lease for this project."""


class RunCancelled(SerialWriterError):
    """The caller cancelled the run between phases."""
