import asyncio
import json
import logging
from typing import Optional

from ..errors import MockReplayError
from ..ledger import UsageRecorder
from .base import EngineContext, agent_message_text, report_usage

logger = logging.getLogger(__name__)

# Pause between replayed events (in seconds) so renderers see a live-looking stream
DEFAULT_MOCK_DELAY = 0.15


class MockEngine:
    """Replays a step's recorded event log instead of spawning an agent.

    Events are rendered in order with ``delay`` seconds between them (none
    before the first). Usage from ``turn.completed`` events is reported as if
    the turns had just happened, and the last agent message is written to
    the result file.
    """

    def __init__(self, delay: float = DEFAULT_MOCK_DELAY) -> None:
        self.delay = delay

    async def run(self, context: EngineContext,
                  usage_recorder: Optional[UsageRecorder] = None) -> None:
        path = context.memory_path
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise MockReplayError(f"mock memory log {path} not found") from None
        except (OSError, UnicodeDecodeError) as e:
            raise MockReplayError(f"failed to read mock memory log {path}: {e}") from e

        emitted = 0
        last_message = None

        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line.startswith("{"):
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                raise MockReplayError(f"failed to parse mock memory event from {path}: {e}") from e

            if emitted and self.delay > 0:
                await asyncio.sleep(self.delay)

            context.renderer.render_event(event)
            emitted += 1

            text = agent_message_text(event)
            if text is not None:
                last_message = text
            report_usage(event, usage_recorder)

        if emitted == 0:
            raise MockReplayError(f"mock memory log {path} does not contain any JSON events")

        if last_message is not None:
            try:
                context.result_path.parent.mkdir(parents=True, exist_ok=True)
                context.result_path.write_text(last_message + "\n", encoding="utf-8")
            except OSError as e:
                raise MockReplayError(
                    f"failed to write result file {context.result_path}: {e}"
                ) from e

        logger.debug(f"Replayed {emitted} events from {path}")
