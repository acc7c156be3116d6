"""Bus-level calls shared by the BlueZ and OBEX managers."""

from __future__ import annotations

from bluemirror.core.model import (
    DBUS_INTERFACE,
    DBUS_PATH,
    DBUS_SERVICE,
    OBJECT_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    ReturnType,
)
from bluemirror.core.pending import PendingCall
from bluemirror.transports.base import Bus, NotificationHandler


def match_rules(service: str) -> list[str]:
    """Signal subscriptions that feed the mirror for ``service``."""
    return [
        f"type='signal',sender='{service}',interface='{OBJECT_MANAGER_INTERFACE}'",
        f"type='signal',sender='{service}',interface='{PROPERTIES_INTERFACE}',member='PropertiesChanged'",
        (
            f"type='signal',sender='{DBUS_SERVICE}',interface='{DBUS_INTERFACE}',"
            f"member='NameOwnerChanged',arg0='{service}'"
        ),
    ]


def subscribe(bus: Bus, service: str) -> list[PendingCall]:
    return [
        PendingCall(
            bus.call(DBUS_SERVICE, DBUS_PATH, DBUS_INTERFACE, "AddMatch", "s", (rule,)),
            description=f"AddMatch {rule}",
        )
        for rule in match_rules(service)
    ]


def name_has_owner(bus: Bus, service: str) -> PendingCall:
    return PendingCall(
        bus.call(DBUS_SERVICE, DBUS_PATH, DBUS_INTERFACE, "NameHasOwner", "s", (service,)),
        ReturnType.VALUE,
        description=f"NameHasOwner {service}",
    )


def managed_objects(bus: Bus, service: str) -> PendingCall:
    return PendingCall(
        bus.call(service, "/", OBJECT_MANAGER_INTERFACE, "GetManagedObjects"),
        ReturnType.VALUE,
        description=f"GetManagedObjects {service}",
    )


def connect(bus: Bus, handler: NotificationHandler) -> PendingCall:
    """Open ``bus`` and route its notifications to ``handler``."""

    async def _connect() -> list[object]:
        await bus.connect()
        bus.remove_notification_handler(handler)
        bus.add_notification_handler(handler)
        return []

    return PendingCall(_connect(), description="Connect bus")
