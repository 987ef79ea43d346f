"""Exception hierarchy shared by the orchestrator, pipeline and API."""
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base class for job admission errors reported to the caller."""

    def __init__(self, message: str, job_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class AlreadyRunning(OrchestratorError):
    """A job of the same type is already active for the tenant."""


class JobNotFound(OrchestratorError):
    """No job exists with the given id."""


class NotRunning(OrchestratorError):
    """The job is not RUNNING, so it cannot be cancelled."""


class JobRunning(OrchestratorError):
    """The job is RUNNING, so it cannot be deleted."""


class InvalidState(OrchestratorError):
    """The job is not in a state that allows the requested action."""


class JobCancelledError(Exception):
    """Raised inside a pipeline once cancellation has been observed."""

    def __init__(self, job_id: str, partial_result: Optional[Dict[str, Any]] = None):
        super().__init__(f"Job {job_id} was cancelled")
        self.job_id = job_id
        self.partial_result = partial_result


class PipelineError(Exception):
    """Base class for pipeline failures."""


class PipelineConfigurationError(PipelineError):
    """Fatal: the pipeline cannot run with the current configuration."""


class SourceFetchError(PipelineError):
    """A feed could not be fetched or parsed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class EmbeddingError(PipelineError):
    """The embedding service failed for an item."""


class ScoringError(PipelineError):
    """The scoring service failed or returned an unusable answer."""


class DuplicateArticleError(PipelineError):
    """An article with the same source URL already exists for the tenant."""
