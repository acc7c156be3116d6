"""Core data models shared by the mirror, the transports and the CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Union

BLUEZ_SERVICE = "org.bluez"
OBEX_SERVICE = "org.bluez.obex"

ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
AGENT_MANAGER_INTERFACE = "org.bluez.AgentManager1"
OBEX_AGENT_MANAGER_INTERFACE = "org.bluez.obex.AgentManager1"
OBEX_CLIENT_INTERFACE = "org.bluez.obex.Client1"
OBEX_SESSION_INTERFACE = "org.bluez.obex.Session1"

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_INTERFACE = "org.freedesktop.DBus"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"


class CallState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ReturnType(Enum):
    """Payload shape of a successful call, fixed when the call is issued."""

    VOID = "void"
    VALUE = "value"
    OBJECT_PATH = "object_path"


class ManagerState(Enum):
    UNACQUIRED = "unacquired"
    ACQUIRING = "acquiring"
    POPULATING = "populating"
    OPERATIONAL = "operational"


class RegisterCapability(IntEnum):
    DISPLAY_ONLY = 0
    DISPLAY_YES_NO = 1
    KEYBOARD_ONLY = 2
    NO_INPUT_NO_OUTPUT = 3

    @property
    def remote_name(self) -> str:
        return _CAPABILITY_NAMES[self]


_CAPABILITY_NAMES = {
    RegisterCapability.DISPLAY_ONLY: "DisplayOnly",
    RegisterCapability.DISPLAY_YES_NO: "DisplayYesNo",
    RegisterCapability.KEYBOARD_ONLY: "KeyboardOnly",
    RegisterCapability.NO_INPUT_NO_OUTPUT: "NoInputNoOutput",
}


@dataclass(frozen=True)
class ObjectAdded:
    path: str
    interfaces: dict[str, dict[str, Any]]


@dataclass(frozen=True)
class ObjectRemoved:
    path: str
    interfaces: tuple[str, ...]


@dataclass(frozen=True)
class PropertiesChanged:
    path: str
    interface: str
    changed: dict[str, Any]
    invalidated: tuple[str, ...] = ()


@dataclass(frozen=True)
class NameOwnerChanged:
    name: str
    old_owner: str
    new_owner: str


Notification = Union[ObjectAdded, ObjectRemoved, PropertiesChanged, NameOwnerChanged]


@dataclass(frozen=True)
class Config:
    bus: str = "system"
    service: str = BLUEZ_SERVICE
    obex_bus: str = "session"
    obex_service: str = OBEX_SERVICE
    call_timeout_s: float = 25.0
    log_level: str = "WARNING"
    sources: tuple[str, ...] = field(default=(), compare=False)
