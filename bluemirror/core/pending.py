"""Single outstanding remote calls with a one-shot, typed completion.

A :class:`PendingCall` is returned by every mirror operation. The request is
handed to the transport as a task on the running event loop, so the caller
always gets the handle back before anything happens. Completion callbacks are
scheduled with ``loop.call_soon`` and never run inside the caller's frame,
even when the call was already resolved at registration time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, cast

from bluemirror.core.errors import (
    ErrorKind,
    OperationError,
    RemoteError,
    TransportError,
    TransportTimeoutError,
)
from bluemirror.core.events import EventSource
from bluemirror.core.model import CallState, ReturnType

LOGGER = logging.getLogger(__name__)

_BACKGROUND: set[asyncio.Task[Any]] = set()


def spawn(
    coro: Coroutine[Any, Any, Any],
    *,
    loop: asyncio.AbstractEventLoop | None = None,
) -> asyncio.Task[Any]:
    """Run ``coro`` as a task that stays referenced until it finishes."""
    task = (loop or asyncio.get_running_loop()).create_task(coro)
    _BACKGROUND.add(task)
    task.add_done_callback(_BACKGROUND.discard)
    return task


class Completion:
    """Outcome shared by calls and jobs: pending until resolved exactly once."""

    def __init__(self, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self.state = CallState.PENDING
        self.value: Any = None
        self.error: ErrorKind | None = None
        self.error_text = ""
        self.finished = EventSource()
        self._callbacks: list[Callable[[Any], Any]] = []
        self._waiter: asyncio.Future[None] | None = None

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def is_finished(self) -> bool:
        return self.state is not CallState.PENDING

    def is_error(self) -> bool:
        return self.state is CallState.FAILED

    def on_complete(self, callback: Callable[[Any], Any]) -> Completion:
        """Call ``callback(self)`` once, on a later loop turn."""
        if self.is_finished():
            self._get_loop().call_soon(callback, self)
        else:
            self._callbacks.append(callback)
        return self

    def result(self) -> Any:
        if self.state is CallState.PENDING:
            raise asyncio.InvalidStateError("Operation has not finished yet")
        if self.state is CallState.FAILED:
            raise OperationError(cast(ErrorKind, self.error), self.error_text)
        return self.value

    async def wait(self) -> Completion:
        if not self.is_finished():
            if self._waiter is None:
                self._waiter = self._get_loop().create_future()
            await asyncio.shield(self._waiter)
        return self

    def __await__(self):
        return self.wait().__await__()

    def _succeed(self, value: Any) -> None:
        self._resolve(CallState.SUCCEEDED, value, None, "")

    def _fail(self, kind: ErrorKind, text: str = "") -> None:
        self._resolve(CallState.FAILED, None, kind, text)

    def _resolve(self, state: CallState, value: Any, error: ErrorKind | None, text: str) -> None:
        if self.state is not CallState.PENDING:
            return
        self.state = state
        self.value = value
        self.error = error
        self.error_text = text

        callbacks, self._callbacks = self._callbacks, []
        if callbacks or self.finished.handlers():
            loop = self._get_loop()
            for callback in callbacks:
                loop.call_soon(callback, self)
            loop.call_soon(self.finished.fire, self)
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)


class PendingCall(Completion):
    """Handle for one remote request."""

    def __init__(
        self,
        request: Awaitable[list[Any]] | None,
        return_type: ReturnType = ReturnType.VOID,
        *,
        description: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        super().__init__(loop=loop)
        self.return_type = return_type
        self.description = description
        self._task: asyncio.Task[Any] | None = None
        if request is not None:
            self._task = spawn(self._run(request), loop=self._get_loop())

    @classmethod
    def failed(cls, kind: ErrorKind, text: str = "", *, description: str = "") -> PendingCall:
        """An already-failed call for a precondition detected locally."""
        call = cls(None, description=description)
        call._fail(kind, text)
        LOGGER.debug("%s rejected locally: %s %s", description or "call", kind.value, text)
        return call

    def __repr__(self) -> str:
        return f"<PendingCall {self.description or '?'} {self.state.value}>"

    async def _run(self, request: Awaitable[list[Any]]) -> None:
        try:
            reply = await request
        except RemoteError as exc:
            self._report_failure(ErrorKind.from_remote(exc.name), exc.text or exc.name)
        except (TransportTimeoutError, asyncio.TimeoutError) as exc:
            self._report_failure(ErrorKind.TIMEOUT, str(exc) or "No reply from remote service")
        except TransportError as exc:
            self._report_failure(ErrorKind.FAILED, str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected error in %s", self.description or "call")
            self._report_failure(ErrorKind.INTERNAL_ERROR, str(exc))
        else:
            self._deliver(reply)

    def _deliver(self, reply: list[Any] | None) -> None:
        if self.return_type is ReturnType.VOID:
            self._succeed(None)
            return
        if not reply:
            self._report_failure(ErrorKind.INTERNAL_ERROR, "Reply carried no value")
            return
        value = reply[0]
        if self.return_type is ReturnType.OBJECT_PATH:
            value = str(value)
        self._succeed(value)

    def _report_failure(self, kind: ErrorKind, text: str) -> None:
        LOGGER.warning("%s failed: %s %s", self.description or "Call", kind.value, text)
        self._fail(kind, text)
