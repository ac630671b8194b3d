"""Runtime directory layout.

All files a run produces live under one runtime root::

    <runtime>/debug/NN-<label>-agent.json        raw engine event log per step
    <runtime>/logs/NN-<label>-agent.log          human-readable step log
    <runtime>/memory/NN-<label>-agent-result.md  final agent message per step
    <runtime>/state/<workflow>/<run_id>.resume.json  checkpoint
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from stepflow.settings import default_runtime_root

RUNTIME_SUBDIRS = ("debug", "logs", "memory", "state")
STATE_FILE_SUFFIX = ".resume.json"

STATE_README = """\
This directory holds stepflow checkpoints, one file per run:

    <workflow>/<run_id>.resume.json

Files are rewritten atomically after every step. A file that fails to load
is moved aside as <name>.corrupt-<timestamp> and the run starts fresh.
Checkpoints are never deleted automatically.
"""

_SEPARATOR_RE = re.compile(r"[\s\-_./]+")
_DISALLOWED_RE = re.compile(r"[^a-z0-9-]")

PathLike = Union[str, Path]


def runtime_root(root: Optional[PathLike] = None) -> Path:
    """Resolve the runtime root: explicit argument, else environment, else default."""
    if root is None:
        return default_runtime_root()
    return Path(root)


def state_root(root: Optional[PathLike] = None) -> Path:
    return runtime_root(root) / "state"


def state_file_path(workflow_name: str, run_id: str, root: Optional[PathLike] = None) -> Path:
    return state_root(root) / workflow_name / f"{run_id}{STATE_FILE_SUFFIX}"


def ensure_runtime_tree(root: Optional[PathLike] = None) -> Path:
    """Create the runtime subdirectories and the state README if missing.

    Returns:
        The resolved runtime root
    """
    base = runtime_root(root)
    for name in RUNTIME_SUBDIRS:
        (base / name).mkdir(parents=True, exist_ok=True)

    readme = base / "state" / "README.md"
    if not readme.exists():
        readme.write_text(STATE_README, encoding="utf-8")
    return base


def sanitize_label(label: str) -> str:
    """Turn an agent id into a filename-safe slug.

    Lowercases, collapses runs of whitespace and ``-_./`` into a single
    hyphen, and drops anything else that is not alphanumeric.

    Returns:
        The slug, or ``"step"`` if nothing is left
    """
    slug = _SEPARATOR_RE.sub("-", label.strip().lower())
    slug = _DISALLOWED_RE.sub("", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    return slug or "step"


@dataclass(frozen=True)
class StepPaths:
    event_log: Path
    human_log: Path
    result: Path


def step_paths(root: PathLike, index: int, agent_id: str) -> StepPaths:
    """Per-step file locations, numbered from 01 in workflow order."""
    base = Path(root)
    stem = f"{index + 1:02d}-{sanitize_label(agent_id)}-agent"
    return StepPaths(
        event_log=base / "debug" / f"{stem}.json",
        human_log=base / "logs" / f"{stem}.log",
        result=base / "memory" / f"{stem}-result.md",
    )


def list_runs(workflow_name: str, root: Optional[PathLike] = None) -> List[str]:
    """List run ids that have a checkpoint for a workflow, sorted."""
    directory = state_root(root) / workflow_name
    if not directory.is_dir():
        return []

    runs = []
    for entry in directory.iterdir():
        if entry.is_file() and entry.name.endswith(STATE_FILE_SUFFIX):
            runs.append(entry.name[:-len(STATE_FILE_SUFFIX)])
    return sorted(runs)
