from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from dbus_fast import Message, MessageType, Variant

from bluemirror.core.errors import RemoteError, TransportConnectError, TransportTimeoutError
from bluemirror.core.model import (
    ADAPTER_INTERFACE,
    DBUS_INTERFACE,
    DBUS_PATH,
    DEVICE_INTERFACE,
    OBJECT_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    Config,
    NameOwnerChanged,
    ObjectAdded,
    ObjectRemoved,
    PropertiesChanged,
)
from bluemirror.transports.dbus import DBusTransport, translate_signal, unwrap, wrap_body

DEVICE = "/org/bluez/hci0/dev_40_79_6A_0C_39_75"


class FakeMessageBus:
    def __init__(self, reply=None, *, delay: float = 0.0) -> None:
        self.reply = reply
        self.delay = delay
        self.sent: list[Message] = []
        self.connected = True

    async def call(self, message: Message):
        self.sent.append(message)
        await asyncio.sleep(self.delay)
        return self.reply


def _transport(reply=None, *, delay: float = 0.0, timeout: float = 1.0) -> tuple[DBusTransport, FakeMessageBus]:
    transport = DBusTransport("system", call_timeout_s=timeout)
    fake = FakeMessageBus(reply, delay=delay)
    transport._bus = fake
    return transport, fake


def test_properties_changed_signal_is_unwrapped() -> None:
    message = Message(
        message_type=MessageType.SIGNAL,
        path=DEVICE,
        interface=PROPERTIES_INTERFACE,
        member="PropertiesChanged",
        signature="sa{sv}as",
        body=[DEVICE_INTERFACE, {"RSSI": Variant("n", -60), "Connected": Variant("b", True)}, ["Name"]],
    )
    assert translate_signal(message) == PropertiesChanged(
        DEVICE, DEVICE_INTERFACE, {"RSSI": -60, "Connected": True}, ("Name",)
    )


def test_object_manager_signals_are_translated() -> None:
    added = Message(
        message_type=MessageType.SIGNAL,
        path="/",
        interface=OBJECT_MANAGER_INTERFACE,
        member="InterfacesAdded",
        signature="oa{sa{sv}}",
        body=[DEVICE, {DEVICE_INTERFACE: {"Address": Variant("s", "40:79:6A:0C:39:75")}}],
    )
    removed = Message(
        message_type=MessageType.SIGNAL,
        path="/",
        interface=OBJECT_MANAGER_INTERFACE,
        member="InterfacesRemoved",
        signature="oas",
        body=[DEVICE, [DEVICE_INTERFACE]],
    )
    assert translate_signal(added) == ObjectAdded(DEVICE, {DEVICE_INTERFACE: {"Address": "40:79:6A:0C:39:75"}})
    assert translate_signal(removed) == ObjectRemoved(DEVICE, (DEVICE_INTERFACE,))


def test_name_owner_changed_and_unrelated_messages() -> None:
    owner = Message(
        message_type=MessageType.SIGNAL,
        path=DBUS_PATH,
        interface=DBUS_INTERFACE,
        member="NameOwnerChanged",
        signature="sss",
        body=["org.bluez", ":1.4", ""],
    )
    other = Message(
        message_type=MessageType.SIGNAL,
        path=DBUS_PATH,
        interface=DBUS_INTERFACE,
        member="NameAcquired",
        signature="s",
        body=[":1.99"],
    )
    assert translate_signal(owner) == NameOwnerChanged("org.bluez", ":1.4", "")
    assert translate_signal(other) is None


def test_wrap_body_wraps_variants_and_dictionaries() -> None:
    body = wrap_body("ssv", [ADAPTER_INTERFACE, "DiscoverableTimeout", 300])
    assert body[:2] == [ADAPTER_INTERFACE, "DiscoverableTimeout"]
    assert body[2].signature == "u"
    assert body[2].value == 300

    destination, args = wrap_body("sa{sv}", ["11:22:33:44:55:66", {"Target": "opp", "Channel": 9}])
    assert destination == "11:22:33:44:55:66"
    assert args["Target"].signature == "s"
    assert args["Channel"].value == 9


def test_wrap_body_rejects_values_without_a_bus_type() -> None:
    with pytest.raises(TypeError):
        wrap_body("ssv", [ADAPTER_INTERFACE, "Alias", object()])


def test_unwrap_is_recursive() -> None:
    value = {"UUIDs": Variant("as", ["a", "b"]), "Nested": Variant("v", Variant("b", False))}
    assert unwrap(value) == {"UUIDs": ["a", "b"], "Nested": False}


def test_unknown_bus_type_is_rejected() -> None:
    with pytest.raises(TransportConnectError):
        DBusTransport("satellite")
    assert DBusTransport.from_config(Config(obex_bus="session"), obex=True).bus_type == "session"


def test_call_requires_connection() -> None:
    transport = DBusTransport("system")
    with pytest.raises(TransportConnectError):
        asyncio.run(transport.call("org.bluez", "/", OBJECT_MANAGER_INTERFACE, "GetManagedObjects"))


def test_call_returns_unwrapped_reply_body() -> None:
    reply = SimpleNamespace(message_type=MessageType.METHOD_RETURN, body=[{"Powered": Variant("b", True)}])
    transport, fake = _transport(reply)

    body = asyncio.run(
        transport.call("org.bluez", "/org/bluez/hci0", PROPERTIES_INTERFACE, "GetAll", "s", (ADAPTER_INTERFACE,))
    )

    assert body == [{"Powered": True}]
    assert fake.sent[0].member == "GetAll"
    assert fake.sent[0].destination == "org.bluez"


def test_error_reply_raises_remote_error() -> None:
    reply = SimpleNamespace(
        message_type=MessageType.ERROR,
        error_name="org.bluez.Error.NotReady",
        body=["Resource Not Ready"],
    )
    transport, _ = _transport(reply)

    with pytest.raises(RemoteError) as info:
        asyncio.run(transport.call("org.bluez", "/org/bluez/hci0", ADAPTER_INTERFACE, "StartDiscovery"))

    assert info.value.name == "org.bluez.Error.NotReady"
    assert info.value.text == "Resource Not Ready"


def test_slow_reply_raises_timeout() -> None:
    transport, _ = _transport(delay=0.5, timeout=0.01)
    with pytest.raises(TransportTimeoutError):
        asyncio.run(transport.call("org.bluez", "/org/bluez/hci0", ADAPTER_INTERFACE, "StopDiscovery"))


def test_incoming_signals_reach_handlers() -> None:
    transport = DBusTransport("system")
    seen = []
    transport.add_notification_handler(seen.append)
    message = Message(
        message_type=MessageType.SIGNAL,
        path=DBUS_PATH,
        interface=DBUS_INTERFACE,
        member="NameOwnerChanged",
        signature="sss",
        body=["org.bluez", "", ":1.5"],
    )
    transport._on_message(message)
    transport.remove_notification_handler(seen.append)
    transport._on_message(message)
    assert seen == [NameOwnerChanged("org.bluez", "", ":1.5")]
