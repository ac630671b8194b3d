"""Checkpoint data model and store.

A checkpoint records, for one ``(workflow_name, run_id)`` pair, which steps
have been attempted, where execution should continue, and the accumulated
token usage. The CheckpointStore owns the in-memory RunState for a run and
persists it after every mutation using the atomic write pattern: write to a
temp file in the same directory, then rename over the real file. Readers
never observe a partially written checkpoint.

A checkpoint that cannot be parsed or migrated is moved aside as
``<name>.corrupt-<UTC timestamp>`` and the run starts fresh. A checkpoint
written by a newer release is never overwritten: SchemaVersionError
propagates to the caller.

While a store is open it holds an exclusive lock on ``<name>.lock`` so two
processes cannot drive the same run at once.
"""

import json
import logging
import os
import sys
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from stepflow.orchestrator.errors import SchemaVersionError, StateFileError, StateLockError
from stepflow.orchestrator.migrations import WORKFLOW_STATE_SCHEMA_VERSION, upgrade
from stepflow.state import state_file_path

if not sys.platform.startswith('win'):
    import fcntl

logger = logging.getLogger(__name__)

CORRUPT_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"


def _is_unix() -> bool:
    """Check if running on Unix (Linux, macOS, etc.)."""
    return not sys.platform.startswith('win')


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class PersistenceMode(Enum):
    """Whether steps recorded by a store ran for real or from a replayed log."""
    REAL = "real"
    MOCK = "mock"


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0

    def add_assign(self, other: "TokenUsage") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.total_cost += other.total_cost

    def is_zero(self) -> bool:
        return (
            self.prompt_tokens == 0
            and self.completion_tokens == 0
            and self.total_tokens == 0
            and self.total_cost == 0
        )

    def copy(self) -> "TokenUsage":
        return TokenUsage(
            self.prompt_tokens, self.completion_tokens, self.total_tokens, self.total_cost
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "total_cost": self.total_cost,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["TokenUsage"]:
        if data is None:
            return None
        return cls(
            prompt_tokens=int(data["prompt_tokens"]),
            completion_tokens=int(data["completion_tokens"]),
            total_tokens=int(data["total_tokens"]),
            total_cost=float(data["total_cost"]),
        )


@dataclass
class StepState:
    """Outcome of one step attempt.

    Attributes:
        index: Zero-based position of the step in the workflow
        status: Outcome of the most recent attempt
        memory_path: Result file written by the engine
        debug_log: Raw event log, or None if none was captured
        needs_real: True if the step must be re-run for real before its
            output can be trusted (recorded in mock mode, or no event log)
        token_delta: Usage reported while running this step
    """
    index: int
    status: StepStatus
    memory_path: str
    debug_log: Optional[str] = None
    needs_real: bool = False
    token_delta: Optional[TokenUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "status": self.status.value,
            "memory_path": self.memory_path,
            "debug_log": self.debug_log,
            "needs_real": self.needs_real,
            "token_delta": self.token_delta.to_dict() if self.token_delta else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepState":
        return cls(
            index=int(data["index"]),
            status=StepStatus(data["status"]),
            memory_path=str(data["memory_path"]),
            debug_log=data.get("debug_log"),
            needs_real=bool(data.get("needs_real", False)),
            token_delta=TokenUsage.from_dict(data.get("token_delta")),
        )


@dataclass
class RunState:
    """The checkpoint document for one run."""
    workflow_name: str = ""
    run_id: str = ""
    resume_pointer: int = 0
    steps: List[StepState] = field(default_factory=list)
    token_usage: Optional[TokenUsage] = None
    schema_version: int = WORKFLOW_STATE_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "workflow_name": self.workflow_name,
            "run_id": self.run_id,
            "resume_pointer": self.resume_pointer,
            "steps": [step.to_dict() for step in self.steps],
            "token_usage": self.token_usage.to_dict() if self.token_usage else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunState":
        """Build a RunState from an upgraded document.

        Raises:
            StateFileError: If a field is missing or has the wrong type
        """
        try:
            steps = [StepState.from_dict(step) for step in data.get("steps") or []]
            resume_pointer = int(data.get("resume_pointer", 0))
            state = cls(
                workflow_name=str(data.get("workflow_name") or ""),
                run_id=str(data.get("run_id") or ""),
                resume_pointer=resume_pointer,
                steps=sorted(steps, key=lambda s: s.index),
                token_usage=TokenUsage.from_dict(data.get("token_usage")),
                schema_version=int(data["schema_version"]),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise StateFileError(f"Malformed checkpoint: {e!r}") from e

        if resume_pointer < 0:
            raise StateFileError(f"Malformed checkpoint: negative resume_pointer {resume_pointer}")
        return state

    @classmethod
    def load_from_path(cls, path: Path) -> "RunState":
        """Read and migrate a checkpoint file without any recovery.

        Raises:
            FileNotFoundError: If the file does not exist
            StateFileError: If the file is malformed or cannot be migrated
            SchemaVersionError: If the file was written by a newer release
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Checkpoint not found: {path}")
        doc, _ = upgrade(path.read_text(encoding="utf-8"))
        return cls.from_dict(doc)

    def step(self, index: int) -> Optional[StepState]:
        for step in self.steps:
            if step.index == index:
                return step
        return None

    def first_needs_real_before(self, before: int) -> Optional[int]:
        """Smallest step index below ``before`` that must be re-run for real."""
        candidates = [s.index for s in self.steps if s.index < before and s.needs_real]
        return min(candidates) if candidates else None


def _backup_path(path: Path) -> Path:
    stamp = datetime.now(timezone.utc).strftime(CORRUPT_TIMESTAMP_FORMAT)
    backup = path.with_name(f"{path.name}.corrupt-{stamp}")
    counter = 1
    while backup.exists():
        backup = path.with_name(f"{path.name}.corrupt-{stamp}-{counter}")
        counter += 1
    return backup


def _acquire_lock(path: Path) -> Optional[int]:
    """Take the exclusive run lock next to a checkpoint file.

    Returns:
        The locked file descriptor, or None on platforms without flock

    Raises:
        StateLockError: If another store already holds the lock
    """
    if not _is_unix():
        return None

    lock_path = path.with_name(f"{path.name}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        os.close(fd)
        raise StateLockError(
            f"Run is already in progress: {lock_path} is locked by another process"
        ) from None
    return fd


def _release_lock(fd: Optional[int]) -> None:
    if fd is None:
        return
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


class CheckpointStore:
    """Owns and persists the RunState of one run.

    Every mutating method writes the checkpoint before returning, except
    where the mutation is a no-op. Use load_or_init() to construct a store;
    close it (or use it as a context manager) to release the run lock.
    """

    def __init__(self, path: Path, state: RunState, mode: PersistenceMode,
                 lock_fd: Optional[int] = None) -> None:
        self.path = Path(path)
        self.state = state
        self.mode = mode
        self._lock_fd = lock_fd

    @classmethod
    def load_or_init(
        cls,
        workflow_name: str,
        run_id: str,
        mode: PersistenceMode,
        runtime_root: Optional[Path] = None,
    ) -> "CheckpointStore":
        """Open the checkpoint for a run, creating a fresh state if there is none.

        A checkpoint that fails to parse or migrate is renamed to a
        ``.corrupt-<timestamp>`` backup and replaced by a fresh state.

        Raises:
            SchemaVersionError: If the checkpoint was written by a newer release
            StateLockError: If another process holds the run lock
        """
        path = state_file_path(workflow_name, run_id, runtime_root)
        lock_fd = _acquire_lock(path)
        try:
            state, changed = cls._read(path, workflow_name, run_id)
            store = cls(path, state, mode, lock_fd)
            if changed:
                store.flush()
        except BaseException:
            _release_lock(lock_fd)
            raise
        return store

    @staticmethod
    def _read(path: Path, workflow_name: str, run_id: str):
        fresh = RunState(workflow_name=workflow_name, run_id=run_id)
        if not path.exists():
            return fresh, False

        try:
            doc, migrated = upgrade(path.read_text(encoding="utf-8"))
            state = RunState.from_dict(doc)
        except SchemaVersionError:
            raise
        except (StateFileError, OSError, UnicodeDecodeError) as e:
            backup = _backup_path(path)
            os.replace(path, backup)
            logger.warning(
                f"workflow state corrupted at {path}; moved to {backup}: {e}; starting fresh",
                extra={"workflow_name": workflow_name, "run_id": run_id},
            )
            return fresh, False

        backfilled = False
        if not state.workflow_name:
            state.workflow_name = workflow_name
            backfilled = True
        if not state.run_id:
            state.run_id = run_id
            backfilled = True
        return state, migrated or backfilled

    def __enter__(self) -> "CheckpointStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the run lock. The checkpoint file is left in place."""
        lock_fd, self._lock_fd = self._lock_fd, None
        _release_lock(lock_fd)

    def flush(self) -> None:
        """Write the current state to disk atomically.

        Raises:
            OSError: If the checkpoint cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            suffix='.tmp',
            prefix=f'{self.path.name}.',
            dir=self.path.parent
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.state.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def record_step(self, step: StepState) -> None:
        """Upsert a step attempt and advance the pointer if it completed.

        Steps recorded in mock mode, or without an event log, are flagged
        as needing a real run.
        """
        if self.mode is PersistenceMode.MOCK or step.debug_log is None:
            step.needs_real = True

        if step.status is StepStatus.COMPLETED:
            self.state.resume_pointer = step.index + 1

        self.state.steps = [s for s in self.state.steps if s.index != step.index]
        self.state.steps.append(step)
        self.state.steps.sort(key=lambda s: s.index)
        self.flush()

        logger.debug(
            f"Recorded step {step.index} as {step.status.value}",
            extra={
                "workflow_name": self.state.workflow_name,
                "run_id": self.state.run_id,
                "step_index": step.index,
            },
        )

    def record_interruption(self, resume_pointer: int) -> None:
        self.state.resume_pointer = resume_pointer
        self.flush()

    def update_token_usage(self, usage: Optional[TokenUsage]) -> None:
        """Replace the aggregate usage."""
        self.state.token_usage = usage.copy() if usage else None
        self.flush()

    def append_token_usage(self, delta: Optional[TokenUsage]) -> None:
        """Add usage to the aggregate. Zero or missing usage writes nothing."""
        if delta is None or delta.is_zero():
            return
        if self.state.token_usage is None:
            self.state.token_usage = TokenUsage()
        self.state.token_usage.add_assign(delta)
        self.flush()

    def mark_step_needs_real(self, index: int) -> bool:
        """Flag a recorded step for real re-execution.

        Returns:
            True if the flag changed (and the checkpoint was written)
        """
        step = self.state.step(index)
        if step is None or step.needs_real:
            return False
        step.needs_real = True
        self.flush()
        return True

    def hydrate(self, resume_pointer: int, steps: List[StepState],
                token_usage: Optional[TokenUsage]) -> None:
        """Seed this run's progress from another checkpoint and persist it."""
        self.state.resume_pointer = resume_pointer
        self.state.steps = sorted(steps, key=lambda s: s.index)
        self.state.token_usage = token_usage.copy() if token_usage else None
        self.flush()
