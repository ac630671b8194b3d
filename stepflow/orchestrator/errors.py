"""Exception classes for orchestrator errors.

This module defines the exception hierarchy used throughout the orchestrator.
The base FlowError class provides a foundation for all stepflow-specific
errors, with specialized subclasses for different failure modes.

ConfigError is re-exported from the config module for convenience.
"""

from stepflow.config import ConfigError


class FlowError(Exception):
    """Base exception for orchestrator errors.

    All orchestrator-specific exceptions inherit from this class,
    allowing callers to catch all orchestrator errors with a single handler.
    """
    pass


class EngineError(FlowError):
    """Raised when a step's engine fails.

    Covers spawn failures, malformed event lines, I/O errors on the event
    log or result file, and non-zero exits of the agent process.
    """
    pass


class MockReplayError(EngineError):
    """Raised when a recorded event log cannot be replayed.

    The log is missing, unreadable, or contains no JSON events.
    """
    pass


class PromptFileError(FlowError):
    """Raised when prompt file operations fail."""
    pass


class StateFileError(FlowError):
    """Raised when checkpoint file operations fail."""
    pass


class SchemaVersionError(StateFileError):
    """Raised when a checkpoint cannot be migrated to the current schema.

    Either the document was written by a newer release or there is no
    migration path from its version.
    """
    pass


class StateLockError(StateFileError):
    """Raised when another process already holds the run lock."""
    pass


class ResumeStateError(FlowError):
    """Raised when a run cannot be resumed.

    This can be due to:
    - Resume being disabled in the environment
    - A missing checkpoint file
    - A checkpoint that does not fit the workflow (pointer or step out of range)
    - A resume source recorded for a different workflow
    """
    pass


class WorkflowInterrupted(FlowError):
    """Raised when an interrupt is observed at a step boundary.

    The checkpoint has already been updated when this is raised, so the
    run can be resumed from ``resume_pointer``.
    """

    def __init__(self, message: str, resume_pointer: int) -> None:
        super().__init__(message)
        self.resume_pointer = resume_pointer


__all__ = [
    'FlowError',
    'ConfigError',
    'EngineError',
    'MockReplayError',
    'PromptFileError',
    'StateFileError',
    'SchemaVersionError',
    'StateLockError',
    'ResumeStateError',
    'WorkflowInterrupted',
]
