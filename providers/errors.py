from typing import Optional


class ImageGenerationError(Exception):
    """Base class for every failure of a single generation request."""


class ConfigurationError(ImageGenerationError):
    """Raised when a provider is missing required settings."""


class BackendUnavailable(ImageGenerationError):
    """Raised when the image backend does not answer its readiness probe."""


class TransportError(ImageGenerationError):
    """Network failure, timeout or HTTP error status on a provider call."""

    def __init__(self, message: str, url: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ParseError(ImageGenerationError):
    """The provider answered with a body of an unexpected shape."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class TaskFailed(ImageGenerationError):
    """The remote queue reported an unsuccessful terminal state."""

    def __init__(self, task_id: str, status):
        super().__init__(f"Task {task_id} ended with status '{status.value}'")
        self.task_id = task_id
        self.status = status


class TaskTimedOut(ImageGenerationError):
    """No terminal state was observed before the local deadline.

    The remote task is abandoned, not cancelled: it may still finish on the
    server after this is raised.
    """

    def __init__(self, task_id: str, timeout: float):
        super().__init__(f"Task {task_id} timed out after {timeout:g} seconds")
        self.task_id = task_id
        self.timeout = timeout


class EmptyResult(ImageGenerationError):
    """The task reported success but produced no images."""

    def __init__(self, task_id: Optional[str], url: str):
        if task_id:
            message = f"Task {task_id} finished but {url} returned no images"
        else:
            message = f"{url} returned no images"
        super().__init__(message)
        self.task_id = task_id
        self.url = url


class DecodeError(ImageGenerationError):
    """The base64 image payload is malformed."""


class ArtifactIOError(ImageGenerationError, OSError):
    """The artifact path is invalid or the file could not be written."""
