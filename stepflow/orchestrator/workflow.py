"""Run orchestration.

run_workflow() drives one workflow's steps in order on the current task.
Before each step it checks the interrupt token; steps below the start index
are skipped; every other step is resolved, handed to its engine, and its
outcome recorded in the checkpoint before the next step begins. A failed
step is recorded as ``failed`` and its error re-raised, so an identical
resume invocation continues from the right place.

start_run() and resume_run() are the two entry points an application
uses. They own the checkpoint store for the duration of the run:

- start_run(): new (or re-used) run id, optionally seeded from another
  run's checkpoint
- resume_run(): continue an existing checkpoint, re-running earlier steps
  that were only ever replayed from mock logs when switching to real mode
"""

import logging
import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from stepflow.config import ConfigError, FlowConfig, ResolvedStep, StepSpec, resolve_step
from stepflow.settings import RESUME_DISABLED_ENV, load_settings, merge_settings_and_options, resume_disabled
from stepflow.state import ensure_runtime_tree, state_file_path, step_paths

from .bus import EventBus
from .checkpoint import (
    CheckpointStore,
    PersistenceMode,
    RunState,
    StepState,
    StepStatus,
    TokenUsage,
)
from .engines import SUPPORTED_ENGINES, BusRenderer, EngineContext, get_engine
from .errors import ResumeStateError, WorkflowInterrupted
from .events import (
    RunInterrupted,
    StepCompleted,
    StepFailed,
    StepSkipped,
    StepStarted,
    WorkflowCompleted,
    WorkflowStarted,
)
from .interrupt import InterruptToken, install_interrupt_handler
from .ledger import StepHandle, TokenLedger
from .observers import StepLogObserver
from .planner import ResumePlanner

logger = logging.getLogger(__name__)

RUN_ID_MAX_LENGTH = 64
RUN_ID_FORMAT = "%Y%m%dT%H%M%SZ"
_RUN_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass
class RunOptions:
    """Caller-controlled settings for one invocation.

    Attributes:
        mock: Replay recorded event logs instead of spawning agents.
            None lets start_run()/resume_run() pick the default.
        verbose: Track usage even when the run is not checkpointed, and log
            a usage summary
        mock_delay: Seconds between replayed events (None for the default)
        prompt_dir: Base directory for relative prompt paths (None for cwd)
    """
    mock: Optional[bool] = None
    verbose: bool = False
    mock_delay: Optional[float] = None
    prompt_dir: Optional[Path] = None

    @classmethod
    def from_settings(cls, cwd: Optional[Path] = None, **kwargs) -> "RunOptions":
        """Build options from keyword arguments, filled in from .stepflow/config.toml."""
        return merge_settings_and_options(load_settings(cwd), cls(**kwargs))


@dataclass
class StatePersistence:
    """A checkpoint store plus the index execution starts from."""
    store: CheckpointStore
    start_index: int = 0


@dataclass(frozen=True)
class RunSummary:
    """Outcome of a completed invocation.

    Attributes:
        executed_steps: Steps run by this invocation
        skipped_steps: Steps skipped because an earlier run completed them
        resume_pointer: Checkpoint pointer after the run
        run_id: Run identifier (None when the run is not checkpointed)
        token_usage: Usage accumulated by this invocation, None if none was reported
    """
    executed_steps: int
    skipped_steps: int
    resume_pointer: int
    run_id: Optional[str]
    token_usage: Optional[TokenUsage]


def resolve_mock_flag(requested: Optional[bool], default: Optional[bool], fallback: bool) -> bool:
    """An explicit request wins, then the workflow's ``defaults.mock``, then fallback."""
    if requested is not None:
        return requested
    if default is not None:
        return default
    return fallback


def validate_run_id(run_id: str) -> str:
    """Check that a run id is usable as a file name.

    Raises:
        ValueError: If the id is empty, longer than 64 characters, or uses
            characters other than letters, digits, ``.``, ``_`` and ``-``
    """
    if not run_id:
        raise ValueError("run id must not be empty")
    if len(run_id) > RUN_ID_MAX_LENGTH:
        raise ValueError(f"run id must be at most {RUN_ID_MAX_LENGTH} characters: {run_id!r}")
    if not _RUN_ID_RE.match(run_id) or run_id in (".", ".."):
        raise ValueError(
            f"run id may only contain letters, digits, '.', '_' and '-': {run_id!r}"
        )
    return run_id


def default_run_id(now: Optional[datetime] = None) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    return now.strftime(RUN_ID_FORMAT)


def derive_run_id(run_id: Optional[str] = None) -> str:
    if run_id is None:
        return default_run_id()
    return validate_run_id(run_id)


def ensure_resume_bounds(state: RunState, total_steps: int) -> None:
    """Reject a checkpoint that does not fit the workflow it is resumed against.

    Raises:
        ResumeStateError: If the pointer or any recorded step is out of range
    """
    if state.resume_pointer > total_steps:
        raise ResumeStateError(
            f"resume pointer {state.resume_pointer} exceeds workflow length {total_steps}"
        )
    for step in state.steps:
        if step.index >= total_steps:
            raise ResumeStateError(
                f"checkpoint records step {step.index} but workflow has {total_steps} steps"
            )


def ensure_resume_source_matches(state: RunState, workflow_name: str) -> None:
    if state.workflow_name and state.workflow_name != workflow_name:
        raise ResumeStateError(
            f"resume source belongs to workflow '{state.workflow_name}', not '{workflow_name}'"
        )


def compute_resume_start(state: RunState) -> int:
    """First step to execute: the pointer, lowered to any earlier step that needs a real run."""
    pointer = state.resume_pointer
    first = state.first_needs_real_before(pointer)
    return min(pointer, first) if first is not None else pointer


def mark_missing_debug_logs(store: CheckpointStore, before: int) -> List[int]:
    """Flag completed steps whose event log has disappeared for real re-execution.

    Returns:
        Indices newly flagged
    """
    flagged = []
    for step in list(store.state.steps):
        if step.index >= before or step.status is not StepStatus.COMPLETED:
            continue
        if step.debug_log is None or not Path(step.debug_log).exists():
            if store.mark_step_needs_real(step.index):
                flagged.append(step.index)
    if flagged:
        logger.info(
            f"Event logs missing for steps {flagged}; they will be re-run",
            extra={"workflow_name": store.state.workflow_name, "run_id": store.state.run_id},
        )
    return flagged


def _resolve_all(config: FlowConfig, steps: Tuple[StepSpec, ...]) -> List[ResolvedStep]:
    """Resolve every step up front so reference errors surface before any execution."""
    resolved = []
    for index, step in enumerate(steps):
        item = resolve_step(config.agent_for(step), step)
        if item.engine not in SUPPORTED_ENGINES:
            raise ConfigError(f"Unsupported engine '{item.engine}' for step {index + 1} ({step.agent})")
        resolved.append(item)
    return resolved


async def _run_step(
    index: int,
    step: StepSpec,
    resolved: ResolvedStep,
    config: FlowConfig,
    options: RunOptions,
    root: Path,
    store: Optional[CheckpointStore],
    handle: Optional[StepHandle],
    bus: EventBus,
) -> None:
    paths = step_paths(root, index, step.agent)
    mock = bool(options.mock)
    engine = get_engine(resolved, mock, options.mock_delay)
    log_extra = {"step_index": index, "agent_id": step.agent}

    bus.emit(StepStarted(
        step_index=index,
        agent_id=step.agent,
        engine=resolved.engine,
        model=resolved.model,
        mock=mock,
        log_path=paths.human_log,
        description=step.description,
    ))
    logger.info(f"Running step {index + 1} ({step.agent}, mock={mock})", extra=log_extra)

    context = EngineContext(
        config=config,
        resolved=resolved,
        memory_path=paths.event_log,
        result_path=paths.result,
        renderer=BusRenderer(bus, index),
        prompt_dir=options.prompt_dir,
    )

    started = time.monotonic()
    try:
        await engine.run(context, handle)
    except Exception as e:
        delta = handle.finish() if handle is not None else None
        if store is not None:
            store.record_step(StepState(
                index=index,
                status=StepStatus.FAILED,
                memory_path=str(paths.result),
                debug_log=str(paths.event_log) if paths.event_log.exists() else None,
                token_delta=delta,
            ))
        bus.emit(StepFailed(step_index=index, agent_id=step.agent, error=str(e)))
        logger.error(f"Step {index + 1} ({step.agent}) failed: {e}", extra=log_extra)
        e.add_note(f"while running step {index + 1} ({step.agent})")
        raise

    duration_ms = (time.monotonic() - started) * 1000
    delta = handle.finish() if handle is not None else None
    if store is not None:
        store.record_step(StepState(
            index=index,
            status=StepStatus.COMPLETED,
            memory_path=str(paths.result),
            debug_log=str(paths.event_log),
            token_delta=delta,
        ))
    bus.emit(StepCompleted(
        step_index=index,
        agent_id=step.agent,
        result_path=paths.result,
        total_tokens=delta.total_tokens if delta else 0,
        cost_usd=delta.total_cost if delta else 0.0,
        duration_ms=duration_ms,
    ))


async def run_workflow(
    config: FlowConfig,
    workflow_name: str,
    options: RunOptions,
    persistence: Optional[StatePersistence] = None,
    interrupt: Optional[InterruptToken] = None,
    runtime_root: Optional[Path] = None,
    bus: Optional[EventBus] = None,
) -> RunSummary:
    """Execute a workflow's steps sequentially.

    Args:
        config: Loaded workflow document
        workflow_name: Workflow to run
        options: Invocation options
        persistence: Checkpoint store and start index. None runs without
            checkpointing, from the first step.
        interrupt: Token checked before each step. If None, the process-wide
            SIGINT token is installed and cleared.
        runtime_root: Runtime directory (None for the environment/default)
        bus: Event bus for observers. A private bus is used if None.

    Returns:
        RunSummary for this invocation

    Raises:
        ConfigError: If the workflow or an agent it references is missing
        WorkflowInterrupted: If the interrupt token was set at a step boundary
        Exception: Whatever the failing step's engine raised (usually EngineError)
    """
    workflow = config.workflow(workflow_name)
    resolved_steps = _resolve_all(config, workflow.steps)
    total = len(workflow.steps)

    root = ensure_runtime_tree(runtime_root)
    store = persistence.store if persistence is not None else None
    run_id = store.state.run_id if store is not None else None
    resume_cursor = persistence.start_index if persistence is not None else 0
    skipped = min(resume_cursor, total)

    if interrupt is None:
        interrupt = install_interrupt_handler()
        interrupt.clear()
    if bus is None:
        bus = EventBus()

    ledger = TokenLedger() if store is not None or options.verbose else None
    observer = StepLogObserver(bus)
    log_extra = {"workflow_name": workflow_name, "run_id": run_id}
    executed = 0

    bus.emit(WorkflowStarted(
        workflow_name=workflow_name,
        run_id=run_id,
        total_steps=total,
        start_index=skipped,
        runtime_root=root,
    ))
    logger.info(
        f"Starting workflow {workflow_name}: {total} steps, starting at step {skipped + 1}",
        extra=log_extra,
    )

    try:
        for index, (step, resolved) in enumerate(zip(workflow.steps, resolved_steps)):
            if interrupt.is_set():
                pointer = store.state.resume_pointer if store is not None else index
                if store is not None:
                    store.record_interruption(pointer)
                bus.emit(RunInterrupted(workflow_name=workflow_name, run_id=run_id, resume_pointer=pointer))
                logger.warning(f"Workflow interrupted before step {index + 1}", extra=log_extra)
                raise WorkflowInterrupted(f"workflow interrupted ({interrupt.reason})", pointer)

            if index < resume_cursor:
                bus.emit(StepSkipped(step_index=index, agent_id=step.agent))
                continue

            handle = ledger.step(resolved.model) if ledger is not None else None
            await _run_step(index, step, resolved, config, options, root, store, handle, bus)
            executed += 1
            if store is not None:
                resume_cursor = store.state.resume_pointer
    finally:
        # Also reached on failure or interrupt so partial runs keep their usage
        total_usage = ledger.total_usage() if ledger is not None else None
        if store is not None:
            store.append_token_usage(total_usage)
        observer.close()

    cost = total_usage.total_cost if total_usage else 0.0
    bus.emit(WorkflowCompleted(
        workflow_name=workflow_name,
        run_id=run_id,
        executed_steps=executed,
        skipped_steps=skipped,
        total_cost_usd=cost,
    ))
    if options.verbose and total_usage is not None:
        logger.info(
            f"Usage: {total_usage.total_tokens} tokens, ${cost:.4f}",
            extra=log_extra,
        )

    return RunSummary(
        executed_steps=executed,
        skipped_steps=skipped,
        resume_pointer=store.state.resume_pointer if store is not None else total,
        run_id=run_id,
        token_usage=total_usage,
    )


async def start_run(
    config: FlowConfig,
    workflow_name: str,
    options: RunOptions,
    run_id: Optional[str] = None,
    resume_from: Optional[Path] = None,
    interrupt: Optional[InterruptToken] = None,
    runtime_root: Optional[Path] = None,
    bus: Optional[EventBus] = None,
) -> RunSummary:
    """Start a checkpointed run.

    Args:
        run_id: Run identifier. Defaults to the current UTC time
            (``YYYYMMDDTHHMMSSZ``).
        resume_from: Another run's checkpoint to seed this run from. Its
            progress, step records and usage are copied, and execution starts
            at its pointer (or at the first earlier step needing a real run).

    Mock mode defaults to the workflow's ``defaults.mock``, else off.

    Raises:
        ValueError: If run_id is invalid
        ResumeStateError: If resume_from is unusable, or given while resume
            is disabled
    """
    workflow = config.workflow(workflow_name)
    total = len(workflow.steps)
    options = replace(options, mock=resolve_mock_flag(options.mock, config.defaults.mock, False))

    if resume_disabled():
        if resume_from is not None:
            raise ResumeStateError(
                f"cannot resume from {resume_from}: resume is disabled by {RESUME_DISABLED_ENV}"
            )
        logger.info(f"Checkpointing disabled by {RESUME_DISABLED_ENV}")
        return await run_workflow(config, workflow_name, options, None, interrupt, runtime_root, bus)

    run_id = derive_run_id(run_id)

    source = None
    if resume_from is not None:
        try:
            source = RunState.load_from_path(resume_from)
        except FileNotFoundError:
            raise ResumeStateError(f"resume state not found at {resume_from}") from None
        ensure_resume_source_matches(source, workflow_name)
        ensure_resume_bounds(source, total)

    mode = PersistenceMode.MOCK if options.mock else PersistenceMode.REAL
    with CheckpointStore.load_or_init(workflow_name, run_id, mode, runtime_root) as store:
        start = 0
        if source is not None:
            store.hydrate(min(source.resume_pointer, total), source.steps, source.token_usage)
            start = compute_resume_start(store.state)
            logger.info(
                f"Seeded run {run_id} from {resume_from}; starting at step {start + 1}",
                extra={"workflow_name": workflow_name, "run_id": run_id},
            )
        return await run_workflow(
            config, workflow_name, options, StatePersistence(store, start),
            interrupt, runtime_root, bus,
        )


async def resume_run(
    config: FlowConfig,
    workflow_name: str,
    run_id: str,
    options: RunOptions,
    interrupt: Optional[InterruptToken] = None,
    runtime_root: Optional[Path] = None,
    bus: Optional[EventBus] = None,
) -> RunSummary:
    """Continue a checkpointed run.

    Mock mode defaults to the workflow's ``defaults.mock``, else on. When
    resuming for real, completed steps whose event logs are gone are flagged,
    and execution restarts at the earliest step before the pointer that was
    never run for real.

    Raises:
        ResumeStateError: If resume is disabled, the checkpoint does not
            exist, or it does not fit the workflow
        SchemaVersionError: If the checkpoint was written by a newer release
    """
    if resume_disabled():
        raise ResumeStateError(f"resume is disabled by {RESUME_DISABLED_ENV}")

    run_id = validate_run_id(run_id)
    workflow = config.workflow(workflow_name)
    options = replace(options, mock=resolve_mock_flag(options.mock, config.defaults.mock, True))

    path = state_file_path(workflow_name, run_id, runtime_root)
    if not path.exists():
        raise ResumeStateError(f"resume state not found at {path}")

    mode = PersistenceMode.MOCK if options.mock else PersistenceMode.REAL
    with CheckpointStore.load_or_init(workflow_name, run_id, mode, runtime_root) as store:
        ensure_resume_bounds(store.state, len(workflow.steps))
        plan = ResumePlanner(workflow).plan(store.state)

        if plan.is_complete():
            logger.info(
                f"Run {run_id} already complete; nothing to resume",
                extra={"workflow_name": workflow_name, "run_id": run_id},
            )
            return RunSummary(
                executed_steps=0,
                skipped_steps=plan.total_steps,
                resume_pointer=store.state.resume_pointer,
                run_id=run_id,
                token_usage=None,
            )

        start = plan.next_step
        if not options.mock:
            mark_missing_debug_logs(store, plan.next_step)
            first = store.state.first_needs_real_before(plan.next_step)
            if first is not None:
                start = min(start, first)

        return await run_workflow(
            config, workflow_name, options, StatePersistence(store, start),
            interrupt, runtime_root, bus,
        )
