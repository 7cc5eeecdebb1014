"""
Event emitter for bridge lifecycle and side-channel events.
"""

"""
Copyright (c) 2025 Firefly Software Solutions Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at:

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set


class BridgeEvent:
    """Names of the events emitted by the bridge."""

    CONNECT = "connect"
    FIRST_TIME_CONNECT = "_first_time_connect"
    DISCONNECT = "disconnect"
    OUTBOUND_ERROR = "outbound_error"


class EventEmitter:
    """
    In-process event emitter.

    Handlers may be plain callables or coroutine functions. Coroutine handlers
    are scheduled on the running loop. A failing handler is logged and never
    propagates to the emitter.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, history_size: int = 100):
        self._handlers: Dict[str, List[Callable]] = {}
        self._history: List[Dict[str, Any]] = []
        self._history_size = history_size
        self._logger = logger or logging.getLogger(__name__)
        self._pending: Set[asyncio.Task] = set()

    def on(self, event_type: str, handler: Callable) -> None:
        """Subscribe to events of a specific type."""
        self._handlers.setdefault(event_type, []).append(handler)

    def once(self, event_type: str, handler: Callable) -> None:
        """Subscribe to the next event of a specific type only."""

        def _once(*args, **kwargs):
            self.off(event_type, _once)
            return handler(*args, **kwargs)

        self.on(event_type, _once)

    def off(self, event_type: str, handler: Callable) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def listener_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    def emit(self, event_type: str, **data: Any) -> None:
        """Emit an event to all subscribers."""
        self._history.append(
            {
                "type": event_type,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": data,
            }
        )
        del self._history[: -self._history_size]

        for handler in list(self._handlers.get(event_type, [])):
            try:
                result = handler(**data)
                if asyncio.iscoroutine(result):
                    self._schedule(event_type, result)
            except Exception as e:
                self._logger.error(
                    f"Error in handler for event '{event_type}': {e}", exc_info=True
                )

    def _schedule(self, event_type: str, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._pending.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                self._logger.error(
                    f"Error in handler for event '{event_type}': {exc}",
                    exc_info=(type(exc), exc, exc.__traceback__),
                )

        task.add_done_callback(_done)

    async def wait_pending(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_emitted_events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get recently emitted events, optionally filtered by type."""
        if event_type is None:
            return list(self._history)
        return [event for event in self._history if event["type"] == event_type]

    def clear_events(self) -> None:
        self._history.clear()
