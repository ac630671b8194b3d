"""Step log observer.

Writes one human-readable log per executed step, at the ``log_path`` carried
by StepStarted (``<runtime>/logs/NN-<agent>-agent.log``). The raw JSON events
live in the step's event log; this file is the condensed view:

    == step 02 review (codex, gpt-5) ==
    thread started: th_1
    agent: Looks good.
    turn completed: input=120 cached=0 output=40
    == completed: 160 tokens, $0.0060 ==

All file operations are wrapped in try/except so a full disk or a removed
directory never fails the step being logged.
"""

import logging
from typing import Any, Dict, Optional, TextIO

from ..bus import EventBus
from ..events import (
    EngineEventReceived,
    PlainOutputReceived,
    StepCompleted,
    StepFailed,
    StepStarted,
)

logger = logging.getLogger(__name__)


def describe_event(event: Dict[str, Any]) -> Optional[str]:
    """Condense an engine event into one log line, or None to omit it.

    Partial item updates are omitted; completed items carry the final text.
    """
    event_type = event.get("type")

    if event_type == "thread.started":
        return f"thread started: {event.get('thread_id', '?')}"
    if event_type == "turn.started":
        return "turn started"
    if event_type == "turn.completed":
        usage = event.get("usage") or {}
        return (
            f"turn completed: input={usage.get('input_tokens', 0)} "
            f"cached={usage.get('cached_input_tokens', 0)} "
            f"output={usage.get('output_tokens', 0)}"
        )
    if event_type == "turn.failed":
        error = event.get("error") or {}
        return f"turn failed: {error.get('message', 'unknown error')}"
    if event_type == "error":
        return f"error: {event.get('message', 'unknown error')}"
    if event_type in ("item.started", "item.updated"):
        return None
    if event_type == "item.completed":
        item = event.get("item") or {}
        if item.get("type") == "agent_message":
            return f"agent: {item.get('text', '')}"
        return f"item completed: {item.get('type', '?')}"
    return f"event: {event_type}"


class StepLogObserver:
    """Writes per-step log files from engine events on the bus.

    Only one step runs at a time, so the observer keeps a single open file.
    Call close() when the run ends.
    """

    def __init__(self, bus: EventBus) -> None:
        self._file: Optional[TextIO] = None
        self._unsubscribe = bus.subscribe({
            StepStarted: self._on_step_started,
            EngineEventReceived: self._on_engine_event,
            PlainOutputReceived: self._on_plain_output,
            StepCompleted: self._on_step_completed,
            StepFailed: self._on_step_failed,
        })

    def close(self) -> None:
        self._close_file()
        self._unsubscribe()

    def _close_file(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        except Exception as e:
            logger.warning(f"Failed to close step log: {e}")
        self._file = None

    def _write(self, line: str) -> None:
        if self._file is None:
            return
        try:
            self._file.write(line + "\n")
            self._file.flush()
        except Exception as e:
            logger.warning(f"Failed to write step log: {e}")

    def _on_step_started(self, event: StepStarted) -> None:
        self._close_file()
        if event.log_path is None:
            return
        try:
            event.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(event.log_path, "w", encoding="utf-8")
        except Exception as e:
            logger.warning(f"Failed to open step log {event.log_path}: {e}")
            return

        mode = "mock" if event.mock else event.engine
        self._write(f"== step {event.step_index + 1:02d} {event.agent_id} ({mode}, {event.model}) ==")
        if event.description:
            self._write(event.description)

    def _on_engine_event(self, event: EngineEventReceived) -> None:
        line = describe_event(event.event)
        if line is not None:
            self._write(line)

    def _on_plain_output(self, event: PlainOutputReceived) -> None:
        self._write(event.text)

    def _on_step_completed(self, event: StepCompleted) -> None:
        self._write(
            f"== completed: {event.total_tokens} tokens, ${event.cost_usd:.4f} =="
        )
        self._close_file()

    def _on_step_failed(self, event: StepFailed) -> None:
        self._write(f"== failed: {event.error} ==")
        self._close_file()
