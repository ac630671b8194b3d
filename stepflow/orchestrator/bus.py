"""Synchronous publish/subscribe bus for run events.

The run orchestrator and engines emit events inline; observers (step log
files, an embedding application's console renderer) subscribe by event type.
Events are emitted from the single task driving the run, so handlers are
plain functions and must only do quick I/O.

A failing handler is logged and skipped so it cannot abort a run or leave a
step unrecorded in the checkpoint.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Mapping, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar('E')

Handler = Callable[[Any], None]


class EventBus:
    """Routes each emitted event to the handlers registered for its class.

    Example usage:
        bus = EventBus()
        bus.on(StepStarted, lambda e: print(f"step {e.step_index} ({e.agent_id})"))
        bus.emit(StepStarted(step_index=0, agent_id="plan", engine="codex",
                             model="gpt-5", mock=True))
    """

    def __init__(self) -> None:
        self._routes: Dict[type, List[Handler]] = defaultdict(list)

    def on(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        self._routes[event_type].append(handler)

    def off(self, event_type: Type[E], handler: Callable[[E], None]) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        registered = self._routes.get(event_type, [])
        if handler in registered:
            registered.remove(handler)

    def subscribe(self, handlers: Mapping[type, Handler]) -> Callable[[], None]:
        """Register several handlers at once.

        Returns:
            A function that removes exactly these registrations
        """
        for event_type, handler in handlers.items():
            self.on(event_type, handler)

        def unsubscribe() -> None:
            for event_type, handler in handlers.items():
                self.off(event_type, handler)

        return unsubscribe

    def emit(self, event: Any) -> None:
        """Call every handler registered for the event's exact type, in order."""
        # Snapshot so handlers may unsubscribe while being dispatched
        targets = tuple(self._routes.get(type(event), ()))
        for handler in targets:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)!s} raised exception "
                    f"for {type(event).__name__}: {e}",
                    exc_info=True,
                )

    def has_handlers(self, event_type: type) -> bool:
        return bool(self._routes.get(event_type))

    def clear(self) -> None:
        self._routes.clear()
