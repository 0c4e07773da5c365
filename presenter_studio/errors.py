"""Exception taxonomy for the presenter pipeline."""


class StudioError(Exception):
    """Base exception for presenter pipeline errors."""
    pass


class ServiceError(StudioError):
    """An external service failed (network, non-2xx, malformed payload).

    Always retryable at the stage level.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class GenerationFailed(ServiceError):
    """Generation task reached a terminal failure state."""
    pass


class GenerationTimeout(ServiceError):
    """Generation task did not finish within the poll budget."""
    pass


class CompositeTimeout(ServiceError):
    """Render job did not finish within the poll budget."""
    pass


class StorageError(ServiceError):
    """Asset store upload/delete/download failed."""
    pass


class ReviewUnavailable(ServiceError):
    """Reviewer could not be consulted."""
    pass


class MissingInputError(StudioError):
    """Required input file is missing or unusable. Fatal, never retried."""
    pass


class ConfigurationError(StudioError):
    """Required credential or setting is missing. Fatal, never retried."""
    pass


class AssetStateError(StudioError):
    """Illegal lifecycle operation on an asset (e.g. promoting a discarded one)."""
    pass


class InvalidTransition(StudioError):
    """Stage state machine received an event not valid in its current state."""
    pass


class FallbackUnavailable(StudioError):
    """A single fallback strategy could not produce a substitute."""
    pass


class FallbackExhausted(StudioError):
    """Every fallback strategy for a stage failed."""
    pass


class StageFailed(StudioError):
    """Terminal stage produced nothing, not even a fallback."""
    pass


class JobCancelled(StudioError):
    """Job was cancelled at a stage boundary."""
    pass


class DeadlineExceeded(StudioError):
    """Job watchdog expired while a call was running or before it started."""
    pass
