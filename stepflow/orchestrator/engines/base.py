"""Engine protocol and shared types.

An engine executes one resolved step. It streams the step's JSON events to a
Renderer, reports ``turn.completed`` usage to a UsageRecorder, and leaves two
files behind: the newline-delimited event log (``memory_path``) and the final
agent message (``result_path``).

Engines emit no other side effects: checkpointing and ledger commits are the
orchestrator's job.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from stepflow.config import FlowConfig, ResolvedStep
from stepflow.orchestrator.bus import EventBus
from stepflow.orchestrator.events import EngineEventReceived, PlainOutputReceived
from stepflow.orchestrator.ledger import UsageRecorder

AGENT_MESSAGE_EVENTS = {"item.started", "item.updated", "item.completed"}


class Renderer(Protocol):
    def render_event(self, event: Dict[str, Any]) -> None:
        ...

    def log_plain_line(self, text: str) -> None:
        ...


class BusRenderer:
    """Renderer that republishes engine output on the event bus."""

    def __init__(self, bus: EventBus, step_index: int) -> None:
        self._bus = bus
        self._step_index = step_index

    def render_event(self, event: Dict[str, Any]) -> None:
        self._bus.emit(EngineEventReceived(step_index=self._step_index, event=event))

    def log_plain_line(self, text: str) -> None:
        self._bus.emit(PlainOutputReceived(step_index=self._step_index, text=text))


@dataclass
class EngineContext:
    """Everything an engine needs to run one step.

    Attributes:
        config: Loaded workflow document (engine presets, prompt vars)
        resolved: Effective engine/model/prompt settings for the step
        memory_path: Event log; written by the real engine, replayed by the mock
        result_path: File receiving the final agent message
        renderer: Sink for events and plain output lines
        prompt_dir: Base directory for relative prompt paths (None for cwd)
    """
    config: FlowConfig
    resolved: ResolvedStep
    memory_path: Path
    result_path: Path
    renderer: Renderer
    prompt_dir: Optional[Path] = None


class Engine(Protocol):
    async def run(self, context: EngineContext,
                  usage_recorder: Optional[UsageRecorder] = None) -> None:
        """Execute the step.

        Raises:
            EngineError: If the step could not be executed to completion
        """
        ...


def agent_message_text(event: Dict[str, Any]) -> Optional[str]:
    """Return the text of an agent_message item event, else None."""
    if event.get("type") not in AGENT_MESSAGE_EVENTS:
        return None
    item = event.get("item")
    if not isinstance(item, dict) or item.get("type") != "agent_message":
        return None
    text = item.get("text")
    return text if isinstance(text, str) else None


def report_usage(event: Dict[str, Any], usage_recorder: Optional[UsageRecorder]) -> None:
    if usage_recorder is None or event.get("type") != "turn.completed":
        return
    usage = event.get("usage")
    if isinstance(usage, dict):
        usage_recorder.record_turn_usage(usage)
