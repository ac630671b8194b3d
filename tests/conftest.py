# Test configuration for pytest
#
# Note: Tests require the package to be installed.
# Run `pip install -e .[test]` from the project root before running tests.

import json
import sys
from pathlib import Path
from typing import Dict, List

import pytest

from stepflow.config import AgentSpec, FlowConfig, StepSpec, WorkflowSpec
from stepflow.settings import RESUME_DISABLED_ENV, RUNTIME_DIR_ENV
from stepflow.state import step_paths


def pytest_configure(config):
    """Register custom markers for platform-specific tests."""
    config.addinivalue_line("markers", "unix: mark test to run only on Unix")
    config.addinivalue_line("markers", "windows: mark test to run only on Windows")


def pytest_collection_modifyitems(config, items):
    """Skip platform-specific tests on incompatible platforms."""
    is_windows = sys.platform.startswith('win')
    skip_unix = pytest.mark.skip(reason="Unix-only test")
    skip_windows = pytest.mark.skip(reason="Windows-only test")

    for item in items:
        if "unix" in item.keywords and is_windows:
            item.add_marker(skip_unix)
        if "windows" in item.keywords and not is_windows:
            item.add_marker(skip_windows)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's environment switches out of tests."""
    monkeypatch.delenv(RESUME_DISABLED_ENV, raising=False)
    monkeypatch.delenv(RUNTIME_DIR_ENV, raising=False)


@pytest.fixture
def runtime_root(tmp_path) -> Path:
    return tmp_path / "runtime"


def make_events(message: str, input_tokens: int = 0, output_tokens: int = 0,
                cached_input_tokens: int = 0) -> List[Dict]:
    """A minimal codex exec event stream for one turn."""
    return [
        {"type": "thread.started", "thread_id": "th_1"},
        {"type": "turn.started"},
        {"type": "item.started", "item": {"id": "item_0", "type": "agent_message", "text": ""}},
        {"type": "item.completed", "item": {"id": "item_0", "type": "agent_message", "text": message}},
        {
            "type": "turn.completed",
            "usage": {
                "input_tokens": input_tokens,
                "cached_input_tokens": cached_input_tokens,
                "output_tokens": output_tokens,
            },
        },
    ]


def write_event_log(path: Path, events: List[Dict]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(e) + "\n" for e in events), encoding="utf-8")
    return path


@pytest.fixture
def flow_config(tmp_path) -> FlowConfig:
    """Three-step workflow 'main' with one agent per step and real prompt files."""
    prompts_dir = tmp_path / "prompts"
    prompts_dir.mkdir()
    agents = {}
    for agent_id in ("plan", "build", "review"):
        prompt = prompts_dir / f"{agent_id}.md"
        prompt.write_text(f"You are the {agent_id} agent for {{{{project}}}}.\n", encoding="utf-8")
        agents[agent_id] = AgentSpec(prompt=str(prompt))

    workflow = WorkflowSpec(steps=tuple(StepSpec(agent=a) for a in ("plan", "build", "review")))
    return FlowConfig(
        name="demo",
        agents=agents,
        workflows={"main": workflow},
        vars={"project": "demo"},
    )


@pytest.fixture
def recorded_logs(runtime_root, flow_config):
    """Write a replayable event log for every step of flow_config's workflow."""
    steps = flow_config.workflow("main").steps
    for index, step in enumerate(steps):
        paths = step_paths(runtime_root, index, step.agent)
        write_event_log(paths.event_log, make_events(f"{step.agent} done", 100, 20))
    return runtime_root


@pytest.fixture
def events_factory():
    return make_events


@pytest.fixture
def log_writer():
    return write_event_log
