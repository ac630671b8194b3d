"""stepflow: resumable, checkpointing runner for multi-step agent workflows."""

# The orchestrator is imported first: the real engine and the prompt
# loader import each other's modules, which is only safe in this order.
from stepflow.orchestrator import (
    CheckpointStore,
    FlowError,
    InterruptToken,
    RunOptions,
    RunSummary,
    resume_run,
    run_workflow,
    start_run,
)
from stepflow.config import ConfigError, FlowConfig, load_workflow
from stepflow.logs import setup_logging
from stepflow.state import list_runs, state_file_path

__version__ = "0.1.0"

__all__ = [
    'CheckpointStore',
    'ConfigError',
    'FlowConfig',
    'FlowError',
    'InterruptToken',
    'RunOptions',
    'RunSummary',
    'list_runs',
    'load_workflow',
    'resume_run',
    'run_workflow',
    'setup_logging',
    'start_run',
    'state_file_path',
]
