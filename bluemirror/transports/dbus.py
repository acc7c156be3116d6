"""D-Bus transport implementation using dbus-fast."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from dbus_fast import BusType, Message, MessageType, SignatureTree, Variant
from dbus_fast.aio import MessageBus

from bluemirror.core.errors import (
    RemoteError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from bluemirror.core.model import (
    DBUS_INTERFACE,
    OBJECT_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    Config,
    NameOwnerChanged,
    Notification,
    ObjectAdded,
    ObjectRemoved,
    PropertiesChanged,
)
from bluemirror.transports.base import NotificationHandler

LOGGER = logging.getLogger(__name__)

_BUS_TYPES = {"system": BusType.SYSTEM, "session": BusType.SESSION}


class DBusTransport:
    def __init__(self, bus_type: str = "system", *, call_timeout_s: float = 25.0) -> None:
        if bus_type not in _BUS_TYPES:
            raise TransportConnectError(f"Unknown bus type '{bus_type}'. Use 'system' or 'session'.")
        self.bus_type = bus_type
        self.call_timeout_s = call_timeout_s
        self._bus: MessageBus | None = None
        self._handlers: list[NotificationHandler] = []

    @classmethod
    def from_config(cls, config: Config, *, obex: bool = False) -> DBusTransport:
        return cls(config.obex_bus if obex else config.bus, call_timeout_s=config.call_timeout_s)

    @property
    def connected(self) -> bool:
        return self._bus is not None and self._bus.connected

    async def connect(self) -> None:
        if self.connected:
            return
        try:
            self._bus = await MessageBus(bus_type=_BUS_TYPES[self.bus_type]).connect()
        except Exception as exc:
            raise TransportConnectError(f"Could not connect to the {self.bus_type} bus: {exc}") from exc
        self._bus.add_message_handler(self._on_message)
        LOGGER.debug("Connected to the %s bus as %s", self.bus_type, self._bus.unique_name)

    async def disconnect(self) -> None:
        bus, self._bus = self._bus, None
        if bus is None:
            return
        bus.remove_message_handler(self._on_message)
        bus.disconnect()
        LOGGER.debug("Disconnected from the %s bus", self.bus_type)

    async def call(
        self,
        service: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Iterable[Any] = (),
    ) -> list[Any]:
        if self._bus is None:
            raise TransportConnectError("Bus is not connected")
        message = Message(
            destination=service,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=wrap_body(signature, list(body)),
        )
        try:
            reply = await asyncio.wait_for(self._bus.call(message), self.call_timeout_s)
        except asyncio.TimeoutError as exc:
            raise TransportTimeoutError(
                f"{interface}.{member} on {path} got no reply within {self.call_timeout_s}s"
            ) from exc
        except (EOFError, OSError) as exc:
            raise TransportError(f"{interface}.{member} on {path} failed: {exc}") from exc

        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body and isinstance(reply.body[0], str) else ""
            raise RemoteError(reply.error_name or "", text)
        return [unwrap(value) for value in reply.body]

    def add_notification_handler(self, handler: NotificationHandler) -> None:
        self._handlers.append(handler)

    def remove_notification_handler(self, handler: NotificationHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def _on_message(self, message: Message) -> None:
        notification = translate_signal(message)
        if notification is None:
            return
        for handler in tuple(self._handlers):
            try:
                handler(notification)
            except Exception:
                LOGGER.exception("Notification handler failed for %s", notification)


def translate_signal(message: Message) -> Notification | None:
    """Turn an incoming signal into a notification variant, or None."""
    if message.message_type != MessageType.SIGNAL:
        return None
    body = message.body
    if message.interface == OBJECT_MANAGER_INTERFACE:
        if message.member == "InterfacesAdded":
            return ObjectAdded(path=str(body[0]), interfaces=unwrap(body[1]))
        if message.member == "InterfacesRemoved":
            return ObjectRemoved(path=str(body[0]), interfaces=tuple(body[1]))
    elif message.interface == PROPERTIES_INTERFACE and message.member == "PropertiesChanged":
        return PropertiesChanged(
            path=message.path,
            interface=body[0],
            changed=unwrap(body[1]),
            invalidated=tuple(body[2]),
        )
    elif message.interface == DBUS_INTERFACE and message.member == "NameOwnerChanged":
        return NameOwnerChanged(name=body[0], old_owner=body[1], new_owner=body[2])
    return None


def unwrap(value: Any) -> Any:
    """Strip variants recursively so the mirror only sees plain values."""
    if isinstance(value, Variant):
        return unwrap(value.value)
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unwrap(item) for item in value]
    return value


def wrap_body(signature: str, body: list[Any]) -> list[Any]:
    if not signature:
        return body
    types = SignatureTree(signature).types
    return [_wrap(sig_type.signature, value) for sig_type, value in zip(types, body)]


def _wrap(signature: str, value: Any) -> Any:
    if signature == "v":
        return value if isinstance(value, Variant) else _guess_variant(value)
    if signature == "a{sv}":
        return {key: _wrap("v", item) for key, item in value.items()}
    return value


def _guess_variant(value: Any) -> Variant:
    if isinstance(value, bool):
        return Variant("b", value)
    if isinstance(value, int):
        return Variant("u" if value >= 0 else "i", value)
    if isinstance(value, float):
        return Variant("d", value)
    if isinstance(value, str):
        return Variant("s", value)
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return Variant("as", list(value))
    raise TypeError(f"Cannot infer a D-Bus type for {value!r}")
