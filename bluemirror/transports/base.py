"""Transport interfaces."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from bluemirror.core.model import Notification

NotificationHandler = Callable[[Notification], None]


class Bus(Protocol):
    async def connect(self) -> None:
        """Open the connection; calling it on an open bus is a no-op."""

    async def disconnect(self) -> None:
        """Close the connection."""

    async def call(
        self,
        service: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Iterable[Any] = (),
    ) -> list[Any]:
        """Invoke a remote method and return the reply body.

        Raises ``RemoteError`` when the remote side replies with an error and
        ``TransportTimeoutError`` when no reply arrives in time.
        """

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        """Deliver every incoming change notification to ``handler``, in order."""

    def remove_notification_handler(self, handler: NotificationHandler) -> None:
        ...
