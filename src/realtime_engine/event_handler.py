import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable, List

from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.event_handler")


class RealtimeObserver:
    """
    Observer of a realtime session. Every hook is optional; override the ones
    you need. Hooks run synchronously on the session's event loop and must not
    block.
    """

    def on_message_received(self, message: Any) -> None:
        pass

    def on_message_sent(self, message: Any) -> None:
        pass

    def on_error(self, error: Exception) -> None:
        pass

    def on_state_changed(self, state: Any) -> None:
        pass

    def on_session_ended(self, reason: str) -> None:
        pass


class RealtimeEventHandler:
    """
    Manages registration and dispatching of event handlers and observers.
    """

    def __init__(self) -> None:
        self.event_handlers = defaultdict(list)
        self.observers: List[RealtimeObserver] = []

    def on(self, event_name: str, handler: Callable[[Any], Any]) -> None:
        """
        Register an event handler for a specific event.

        Args:
            event_name (str): Name of the event, e.g. "server.error" or "server.*".
            handler (Callable): Function or coroutine to handle the event.
        """
        self.event_handlers[event_name].append(handler)
        logger.debug(f"Handler registered for event: {event_name}")

    def off(self, event_name: str, handler: Callable[[Any], Any]) -> None:
        handlers = self.event_handlers.get(event_name, [])
        if handler in handlers:
            handlers.remove(handler)

    def dispatch(self, event_name: str, event: Any) -> None:
        """
        Dispatch an event to all registered handlers.

        Coroutine handlers are scheduled as tasks; handler failures are logged
        and never propagate into the session.
        """
        handlers = list(self.event_handlers.get(event_name, []))
        if handlers:
            logger.debug(f"Dispatching event: {event_name} to {len(handlers)} handler(s)")
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    asyncio.create_task(handler(event))
                else:
                    handler(event)
            except Exception as e:
                logger.error(f"Error dispatching event {event_name}: {e}")

    async def wait_for_next(self, event_name: str, timeout: float = None) -> Any:
        """
        Wait for the next occurrence of a specific event.

        Args:
            event_name (str): Name of the event to wait for.
            timeout (float, optional): Seconds to wait before raising asyncio.TimeoutError.

        Returns:
            The event payload.
        """
        future = asyncio.get_running_loop().create_future()

        def handler(event):
            if not future.done():
                future.set_result(event)

        self.on(event_name, handler)
        logger.debug(f"Waiting for next event: {event_name}")
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.off(event_name, handler)

    def add_observer(self, observer: RealtimeObserver) -> None:
        if observer not in self.observers:
            self.observers.append(observer)

    def remove_observer(self, observer: RealtimeObserver) -> None:
        if observer in self.observers:
            self.observers.remove(observer)

    def notify(self, hook: str, *args: Any) -> None:
        """Invoke `hook` on every observer, isolating observer failures."""
        for observer in list(self.observers):
            callback = getattr(observer, hook, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"Observer {type(observer).__name__}.{hook} failed: {e}")
