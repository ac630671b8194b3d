"""Engines that execute a single workflow step.

The set of engines is closed: ``codex`` steps run either for real
(CodexEngine) or by replaying their recorded event log (MockEngine).
"""

from typing import Optional

from stepflow.config import ResolvedStep

from ..errors import EngineError
from .base import (
    BusRenderer,
    Engine,
    EngineContext,
    Renderer,
    agent_message_text,
    report_usage,
)
from .mock import DEFAULT_MOCK_DELAY, MockEngine
from .real import CodexEngine, build_command

SUPPORTED_ENGINES = ("codex",)


def get_engine(resolved: ResolvedStep, mock: bool,
               mock_delay: Optional[float] = None) -> Engine:
    """Select the engine for a resolved step.

    Raises:
        EngineError: If the step names an engine that is not supported
    """
    if resolved.engine not in SUPPORTED_ENGINES:
        raise EngineError(f"Unsupported engine: {resolved.engine}")
    if mock:
        return MockEngine(DEFAULT_MOCK_DELAY if mock_delay is None else mock_delay)
    return CodexEngine()


__all__ = [
    'BusRenderer',
    'CodexEngine',
    'DEFAULT_MOCK_DELAY',
    'Engine',
    'EngineContext',
    'MockEngine',
    'Renderer',
    'SUPPORTED_ENGINES',
    'agent_message_text',
    'build_command',
    'get_engine',
    'report_usage',
]
