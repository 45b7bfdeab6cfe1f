"""
Error classes for the pipeline orchestrator.

Callers branch on the error kind:
- InvalidInput: malformed request, never retried
- NotFound: referenced entity missing or soft-deleted
- Conflict: uniqueness violation, caller must pick a new identifier
- StaleState: lost an optimistic-concurrency race, re-read and retry
- RetryableError: transient executor/backend failure, retried up to a bound
"""


class PipelineError(Exception):
    """Base exception for the orchestrator."""
    pass


class InvalidInput(PipelineError):
    pass


class NotFound(PipelineError):
    pass


class AppNotFound(NotFound):
    pass


class BuildNotFound(NotFound):
    pass


class ReleaseNotFound(NotFound):
    pass


class DeployNotFound(NotFound):
    pass


class Conflict(PipelineError):
    pass


class VersionConflict(Conflict):
    """Raised when (app, version) already has a release.

    The build that produced the artifact is already recorded as succeeded;
    only release materialization failed.
    """

    def __init__(self, app_id: int, version: str, build_id: int = None):
        self.app_id = app_id
        self.version = version
        self.build_id = build_id
        super().__init__(f"Release {version!r} already exists for app {app_id}")


class ReleaseInUse(Conflict):
    pass


class LogChunkConflict(Conflict):
    """A chunk already exists at this index with different content."""
    pass


class AdmissionDenied(Conflict):
    pass


class StaleState(PipelineError):
    """
    Optimistic-concurrency loss.

    The row was not in any of the expected statuses when the guarded
    update ran. The caller must re-read before deciding what to do.
    """

    def __init__(self, entity: str, entity_id: int, expected, actual=None):
        self.entity = entity
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{entity} {entity_id} is {actual}, expected one of {sorted(expected)}"
        )


class LogChunkGap(StaleState):
    """Append skipped an index; the writer must resync and retry."""

    def __init__(self, build_id: int, step_id, chunk_index: int, expected_index: int):
        self.entity = "log"
        self.entity_id = build_id
        self.expected = {expected_index}
        self.actual = chunk_index
        self.build_id = build_id
        self.step_id = step_id
        self.chunk_index = chunk_index
        self.expected_index = expected_index
        PipelineError.__init__(
            self,
            f"Chunk {chunk_index} for build {build_id} step {step_id} "
            f"arrived before chunk {expected_index}",
        )


class IllegalTransition(PipelineError):
    pass


class ReleaseNotReady(PipelineError):
    pass


class PermissionDenied(PipelineError):
    pass


class RetryableError(PipelineError):
    """
    Transient failure raised by an executor or deployment backend.

    Examples: registry rate limit, API server unavailable, connection reset.
    """
    pass
