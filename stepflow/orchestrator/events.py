"""Event dataclasses for the run event bus.

Events describe what happened while a workflow ran. Run-level events carry
``workflow_name`` and ``run_id``; step-level events carry ``step_index``
(zero-based) so observers can correlate output with checkpoint entries.

Events are immutable and are the only channel between the orchestrator and
renderers: the orchestrator never formats output for humans itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class WorkflowStarted:
    """Emitted before the first step is considered.

    Attributes:
        workflow_name: Name of the workflow being run
        run_id: Run identifier (None when the run is not checkpointed)
        total_steps: Number of steps in the workflow
        start_index: First step that will execute; earlier steps are skipped
        runtime_root: Directory receiving logs, results and checkpoints
        timestamp: When the run started
    """
    workflow_name: str
    run_id: Optional[str]
    total_steps: int
    start_index: int
    runtime_root: Path
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StepSkipped:
    """Emitted for each step below the resume start index."""
    step_index: int
    agent_id: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StepStarted:
    """Emitted when a step is handed to its engine.

    Attributes:
        step_index: Zero-based position in the workflow
        agent_id: Agent the step runs
        engine: Resolved engine name
        model: Resolved model name
        mock: True if the step replays its recorded event log
        log_path: Human-readable log file for this step (None if not kept)
        description: Step description from the workflow document
        timestamp: When the step started
    """
    step_index: int
    agent_id: str
    engine: str
    model: str
    mock: bool
    log_path: Optional[Path] = None
    description: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class EngineEventReceived:
    """Emitted for each JSON event produced by the engine."""
    step_index: int
    event: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class PlainOutputReceived:
    """Emitted for engine output lines that are not JSON events (including stderr)."""
    step_index: int
    text: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StepCompleted:
    """Emitted after a successful step has been checkpointed.

    Attributes:
        step_index: Zero-based position in the workflow
        agent_id: Agent the step ran
        result_path: File holding the final agent message
        total_tokens: Tokens used by this step (0 if none were reported)
        cost_usd: Cost of this step
        duration_ms: Wall-clock duration of the engine call
        timestamp: When the step completed
    """
    step_index: int
    agent_id: str
    result_path: Path
    total_tokens: int
    cost_usd: float
    duration_ms: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class StepFailed:
    """Emitted after a failed step has been checkpointed, before the error propagates."""
    step_index: int
    agent_id: str
    error: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RunInterrupted:
    """Emitted when an interrupt is observed at a step boundary."""
    workflow_name: str
    run_id: Optional[str]
    resume_pointer: int
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class WorkflowCompleted:
    """Emitted after the last step.

    Attributes:
        workflow_name: Name of the workflow
        run_id: Run identifier (None when the run is not checkpointed)
        executed_steps: Steps run by this invocation
        skipped_steps: Steps skipped because an earlier run completed them
        total_cost_usd: Cost accumulated by this invocation
        timestamp: When the run completed
    """
    workflow_name: str
    run_id: Optional[str]
    executed_steps: int
    skipped_steps: int
    total_cost_usd: float
    timestamp: datetime = field(default_factory=datetime.now)
