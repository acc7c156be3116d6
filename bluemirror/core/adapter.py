"""Mirror of one remote Bluetooth adapter and the devices it owns."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from bluemirror.core.device import Device
from bluemirror.core.errors import ErrorKind
from bluemirror.core.events import EventSource
from bluemirror.core.mirror import PropertyField, RemoteObject, as_text, as_uuids, mirrored
from bluemirror.core.model import ADAPTER_INTERFACE
from bluemirror.core.pending import PendingCall

if TYPE_CHECKING:
    from bluemirror.core.manager import Manager

LOGGER = logging.getLogger(__name__)


class Adapter(RemoteObject):
    """One remote controller.

    Devices live in a mapping keyed by object path. Each device holds a
    non-owning reference back to this adapter that is cleared when the device
    (or this adapter) is removed, so stale handles must be revalidated with
    :meth:`device_for_path` before use.
    """

    INTERFACE = ADAPTER_INTERFACE
    FIELDS = (
        PropertyField("Address", "address", as_text, ""),
        PropertyField("Name", "name", as_text, ""),
        PropertyField("Alias", "alias", as_text, ""),
        PropertyField("Class", "adapter_class", int, 0),
        PropertyField("Powered", "powered", bool, False),
        PropertyField("Discoverable", "discoverable", bool, False),
        PropertyField("DiscoverableTimeout", "discoverable_timeout", int, 0),
        PropertyField("Pairable", "pairable", bool, False),
        PropertyField("PairableTimeout", "pairable_timeout", int, 0),
        PropertyField("Discovering", "discovering", bool, False),
        PropertyField("UUIDs", "uuids", as_uuids, ()),
        PropertyField("Modalias", "modalias", as_text, ""),
    )

    address = mirrored("address")
    name = mirrored("name")
    alias = mirrored("alias")
    adapter_class = mirrored("adapter_class")
    powered = mirrored("powered")
    discoverable = mirrored("discoverable")
    discoverable_timeout = mirrored("discoverable_timeout")
    pairable = mirrored("pairable")
    pairable_timeout = mirrored("pairable_timeout")
    discovering = mirrored("discovering")
    uuids = mirrored("uuids")
    modalias = mirrored("modalias")

    def __init__(self, ubi: str, properties: Mapping[str, Any], manager: Manager) -> None:
        super().__init__(ubi, properties)
        self._manager_ref: Manager | None = manager
        self._devices: dict[str, Device] = {}
        self.device_found = EventSource()
        self.device_removed = EventSource()
        self.device_changed = EventSource()

    @property
    def manager(self) -> Manager | None:
        """Owning manager, or None once this adapter has been removed."""
        return self._manager_ref

    def devices(self) -> list[Device]:
        return [self._devices[path] for path in sorted(self._devices)]

    def device_for_path(self, path: str) -> Device | None:
        return self._devices.get(path)

    def device_for_address(self, address: str) -> Device | None:
        wanted = address.upper()
        for device in self._devices.values():
            if device.address.upper() == wanted:
                return device
        return None

    def set_alias(self, alias: str) -> PendingCall:
        return self._set_property("Alias", alias)

    def set_powered(self, powered: bool) -> PendingCall:
        return self._set_property("Powered", bool(powered))

    def set_discoverable(self, discoverable: bool) -> PendingCall:
        return self._set_property("Discoverable", bool(discoverable))

    def set_discoverable_timeout(self, timeout: int) -> PendingCall:
        return self._set_property("DiscoverableTimeout", int(timeout))

    def set_pairable(self, pairable: bool) -> PendingCall:
        return self._set_property("Pairable", bool(pairable))

    def set_pairable_timeout(self, timeout: int) -> PendingCall:
        return self._set_property("PairableTimeout", int(timeout))

    def start_discovery(self) -> PendingCall:
        """Ask the remote side to scan; devices arrive later as notifications."""
        return self._call("StartDiscovery")

    def stop_discovery(self) -> PendingCall:
        return self._call("StopDiscovery")

    def remove_device(self, device: Device) -> PendingCall:
        if self._devices.get(device.ubi) is not device:
            return PendingCall.failed(
                ErrorKind.DOES_NOT_EXIST,
                f"{device.ubi} is not a device of {self.ubi}",
                description=f"RemoveDevice on {self.ubi}",
            )
        return self._call("RemoveDevice", "o", (device.ubi,))

    def _manager(self) -> Manager | None:
        return self._manager_ref

    def _add_device(self, path: str, properties: Mapping[str, Any], *, announce: bool = True) -> Device:
        device = self._devices.get(path)
        if device is not None:
            device.apply_properties(properties, announce=announce)
            return device
        device = Device(path, properties, self)
        device.changed += self.device_changed.fire
        self._devices[path] = device
        LOGGER.debug("Device %s found on %s", path, self.ubi)
        if announce:
            self.device_found.fire(device)
        return device

    def _remove_device(self, path: str, *, announce: bool = True) -> Device | None:
        device = self._devices.pop(path, None)
        if device is None:
            return None
        device.changed -= self.device_changed.fire
        device._detach()
        LOGGER.debug("Device %s removed from %s", path, self.ubi)
        if announce:
            self.device_removed.fire(device)
        return device

    def _detach(self, *, announce: bool = True) -> None:
        for path in sorted(self._devices):
            self._remove_device(path, announce=announce)
        super()._detach()
        self._manager_ref = None
