"""Plain observer lists used for every change event in the mirror."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class EventSource:
    def __init__(self) -> None:
        self._handlers: list[Callable[..., Any]] = []

    def __iadd__(self, handler: Callable[..., Any]) -> EventSource:
        return self.add(handler)

    def __isub__(self, handler: Callable[..., Any]) -> EventSource:
        return self.remove(handler)

    def add(self, handler: Callable[..., Any]) -> EventSource:
        self._handlers.append(handler)
        return self

    def remove(self, handler: Callable[..., Any]) -> EventSource:
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self) -> tuple[Callable[..., Any], ...]:
        return tuple(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()

    def fire(self, *args: Any, **kwargs: Any) -> None:
        # Handlers may unsubscribe while being notified.
        for handler in tuple(self._handlers):
            handler(*args, **kwargs)
