"""Observer and cache-change listener registries.

Observers are notified around every SOAP and HTTP call. They may implement
any subset of the hooks below; missing hooks are skipped and hook results
are ignored, except that exceptions raised by a hook propagate to the
caller. :class:`Observer` provides no-op defaults for subclassing.

Cache-change listeners expose ``invalidate_cache_item(schema_id)`` and are
told when a cached schema is dropped.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, List

logger = logging.getLogger(__name__)

OBSERVER_HOOKS = (
    "on_soap_call",
    "on_soap_call_success",
    "on_soap_call_failure",
    "on_http_call",
    "on_http_call_success",
    "on_http_call_failure",
)


class Observer:
    """Base class with no-op hooks."""

    def on_soap_call(self, context) -> None:
        pass

    def on_soap_call_success(self, context, result) -> None:
        pass

    def on_soap_call_failure(self, context, error) -> None:
        pass

    def on_http_call(self, request) -> None:
        pass

    def on_http_call_success(self, request, body) -> None:
        pass

    def on_http_call_failure(self, request, error) -> None:
        pass


class ObserverRegistry:
    def __init__(self) -> None:
        self._observers: List[Any] = []

    def register(self, observer: Any) -> None:
        self._observers.append(observer)

    def unregister(self, observer: Any) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def unregister_all(self) -> None:
        self._observers.clear()

    def __len__(self) -> int:
        return len(self._observers)

    def __iter__(self):
        return iter(list(self._observers))

    async def notify(self, hook: str, *args: Any) -> None:
        """Call ``hook`` on every observer that has it; coroutine hooks are awaited."""
        for observer in list(self._observers):
            callback = getattr(observer, hook, None)
            if callback is None:
                continue
            result = callback(*args)
            if inspect.isawaitable(result):
                await result


class CacheChangeListenerRegistry:
    def __init__(self) -> None:
        self._listeners: List[Any] = []

    def register(self, listener: Any) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: Any) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def unregister_all(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def notify(self, schema_id: str) -> None:
        for listener in list(self._listeners):
            logger.debug(f"Notifying cache change listener for '{schema_id}'")
            listener.invalidate_cache_item(schema_id)
