from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from bluemirror.core.manager import Manager
from bluemirror.core.model import ADAPTER_INTERFACE, DEVICE_INTERFACE, Notification

HCI0 = "/org/bluez/hci0"
HCI1 = "/org/bluez/hci1"
SPEAKER = f"{HCI0}/dev_40_79_6A_0C_39_75"


class FakeBus:
    """In-memory stand-in for the D-Bus transport.

    ``objects`` is what GetManagedObjects returns. ``failures`` maps a member
    name to the exception its calls raise, ``replies`` maps a member name to a
    canned reply body and ``reactions`` lets a test emit notifications while a
    call is being handled.
    """

    def __init__(self, objects: dict[str, dict[str, dict[str, Any]]] | None = None, *, running: bool = True) -> None:
        self.objects = objects if objects is not None else {}
        self.running = running
        self.connected = False
        self.disconnects = 0
        self.calls: list[tuple[str, str, str, str, tuple[Any, ...]]] = []
        self.handlers: list[Callable[[Notification], None]] = []
        self.failures: dict[str, Exception] = {}
        self.replies: dict[str, list[Any]] = {}
        self.reactions: dict[str, Callable[[FakeBus, str, tuple[Any, ...]], None]] = {}

    async def connect(self) -> None:
        if "connect" in self.failures:
            raise self.failures["connect"]
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False
        self.disconnects += 1

    async def call(
        self,
        service: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Iterable[Any] = (),
    ) -> list[Any]:
        body = tuple(body)
        self.calls.append((service, path, interface, member, body))
        if member in self.failures:
            raise self.failures[member]
        reaction = self.reactions.get(member)
        if reaction is not None:
            reaction(self, path, body)
        if member in self.replies:
            return list(self.replies[member])
        if member == "NameHasOwner":
            return [self.running]
        if member == "GetManagedObjects":
            return [copy.deepcopy(self.objects)]
        if member == "GetAll":
            return [dict(self.objects.get(path, {}).get(body[0], {}))]
        return []

    def add_notification_handler(self, handler: Callable[[Notification], None]) -> None:
        self.handlers.append(handler)

    def remove_notification_handler(self, handler: Callable[[Notification], None]) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def emit(self, notification: Notification) -> None:
        for handler in tuple(self.handlers):
            handler(notification)

    def members(self) -> list[str]:
        return [call[3] for call in self.calls]


def adapter_props(address: str, *, powered: bool = True, alias: str = "") -> dict[str, Any]:
    return {
        "Address": address,
        "Name": "bluez",
        "Alias": alias or address,
        "Class": 0x6C010C,
        "Powered": powered,
        "Discoverable": False,
        "DiscoverableTimeout": 180,
        "Pairable": True,
        "PairableTimeout": 0,
        "Discovering": False,
        "UUIDs": ["0000110E-0000-1000-8000-00805F9B34FB"],
        "Modalias": "usb:v1D6Bp0246d0540",
    }


def device_props(address: str, adapter: str, **extra: Any) -> dict[str, Any]:
    props = {
        "Address": address,
        "Name": "Speaker",
        "Alias": "Speaker",
        "Adapter": adapter,
        "Paired": True,
        "Trusted": False,
        "Connected": False,
        "UUIDs": ["0000110B-0000-1000-8000-00805F9B34FB"],
    }
    props.update(extra)
    return props


@pytest.fixture
def bluez_objects() -> dict[str, dict[str, dict[str, Any]]]:
    return {
        "/org/bluez": {"org.bluez.AgentManager1": {}},
        HCI0: {ADAPTER_INTERFACE: adapter_props("AA:BB:CC:DD:EE:01", powered=True)},
        SPEAKER: {DEVICE_INTERFACE: device_props("40:79:6A:0C:39:75", HCI0)},
    }


@pytest.fixture
def fake_bus(bluez_objects) -> FakeBus:
    return FakeBus(bluez_objects)


@pytest.fixture(autouse=True)
def reset_manager():
    Manager._instance = None
    Manager._references = 0
    yield
    Manager._instance = None
    Manager._references = 0
