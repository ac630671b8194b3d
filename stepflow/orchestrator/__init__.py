"""Orchestrator package for checkpointed workflow runs.

This package holds the run loop, the checkpoint store and its schema
migrations, the resume planner, the usage ledger, the engines that execute
individual steps, and the event bus that connects them to observers.
"""

from stepflow.orchestrator.errors import (
    ConfigError,
    EngineError,
    FlowError,
    MockReplayError,
    PromptFileError,
    ResumeStateError,
    SchemaVersionError,
    StateFileError,
    StateLockError,
    WorkflowInterrupted,
)
from stepflow.orchestrator.checkpoint import (
    CheckpointStore,
    PersistenceMode,
    RunState,
    StepState,
    StepStatus,
    TokenUsage,
)
from stepflow.orchestrator.migrations import WORKFLOW_STATE_SCHEMA_VERSION, upgrade
from stepflow.orchestrator.planner import ResumePlan, ResumePlanner
from stepflow.orchestrator.ledger import StepHandle, TokenLedger, pricing_for_model
from stepflow.orchestrator.bus import EventBus
from stepflow.orchestrator.interrupt import InterruptToken, install_interrupt_handler
from stepflow.orchestrator.workflow import (
    RunOptions,
    RunSummary,
    StatePersistence,
    resume_run,
    run_workflow,
    start_run,
)

__all__ = [
    'CheckpointStore',
    'ConfigError',
    'EngineError',
    'EventBus',
    'FlowError',
    'InterruptToken',
    'MockReplayError',
    'PersistenceMode',
    'PromptFileError',
    'ResumePlan',
    'ResumePlanner',
    'ResumeStateError',
    'RunOptions',
    'RunState',
    'RunSummary',
    'SchemaVersionError',
    'StatePersistence',
    'StateFileError',
    'StateLockError',
    'StepHandle',
    'StepState',
    'StepStatus',
    'TokenLedger',
    'TokenUsage',
    'WORKFLOW_STATE_SCHEMA_VERSION',
    'WorkflowInterrupted',
    'install_interrupt_handler',
    'pricing_for_model',
    'resume_run',
    'run_workflow',
    'start_run',
    'upgrade',
]
