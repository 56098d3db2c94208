"""
Event chain execution engine.

Runs a workflow on top of ``EventBus`` by feeding each handler result back
into the bus until no handler produces another event.
"""

from typing import AsyncGenerator, Optional

from .events import BaseEvent, BreakEvent, EventBus, Dependencies, TERMINAL_EVENTS


class EventChain:
    """Executes event-driven workflows by chaining event handler results."""

    def __init__(self, event_bus: EventBus, deps: Dependencies) -> None:
        """
        Args:
            event_bus: The event bus to dispatch events through.
            deps: Dependencies container to pass to handlers.
        """
        self.event_bus = event_bus
        self.deps = deps

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute the chain starting from ``initial_event``.

        Yields:
            Every event produced along the way, depth first.
        """
        async for event in self._process_event(initial_event):
            yield event

    async def resolve(self, initial_event: BaseEvent) -> Optional[BaseEvent]:
        """Run the chain to completion and return the first terminal event, if any."""
        terminal: Optional[BaseEvent] = None
        async for event in self.execute(initial_event):
            if terminal is None and isinstance(event, TERMINAL_EVENTS):
                terminal = event
        return terminal

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        if isinstance(event, BreakEvent):
            return

        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if not isinstance(result, BaseEvent):
                raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
            yield result
            async for e in self._process_event(result):
                yield e
