"""Mirror of one remote Bluetooth device."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from bluemirror.core.mirror import PropertyField, RemoteObject, as_text, as_uuids, mirrored
from bluemirror.core.model import DEVICE_INTERFACE
from bluemirror.core.pending import PendingCall

if TYPE_CHECKING:
    from bluemirror.core.adapter import Adapter
    from bluemirror.core.manager import Manager


class Device(RemoteObject):
    INTERFACE = DEVICE_INTERFACE
    FIELDS = (
        PropertyField("Address", "address", as_text, ""),
        PropertyField("Name", "name", as_text, ""),
        PropertyField("Alias", "alias", as_text, ""),
        PropertyField("Icon", "icon", as_text, ""),
        PropertyField("Class", "device_class", int, 0),
        PropertyField("Appearance", "appearance", int, 0),
        PropertyField("Paired", "paired", bool, False),
        PropertyField("Trusted", "trusted", bool, False),
        PropertyField("Blocked", "blocked", bool, False),
        PropertyField("Connected", "connected", bool, False),
        PropertyField("LegacyPairing", "legacy_pairing", bool, False),
        PropertyField("RSSI", "rssi", int, None),
        PropertyField("UUIDs", "uuids", as_uuids, ()),
        PropertyField("Modalias", "modalias", as_text, ""),
    )

    address = mirrored("address")
    name = mirrored("name")
    alias = mirrored("alias")
    icon = mirrored("icon")
    device_class = mirrored("device_class")
    appearance = mirrored("appearance")
    paired = mirrored("paired")
    trusted = mirrored("trusted")
    blocked = mirrored("blocked")
    connected = mirrored("connected")
    legacy_pairing = mirrored("legacy_pairing")
    rssi = mirrored("rssi")
    uuids = mirrored("uuids")
    modalias = mirrored("modalias")

    def __init__(self, ubi: str, properties: Mapping[str, Any], adapter: Adapter) -> None:
        super().__init__(ubi, properties)
        self._adapter: Adapter | None = adapter

    @property
    def adapter(self) -> Adapter | None:
        """Owning adapter, or None once this device has been removed."""
        return self._adapter

    def friendly_name(self) -> str:
        return self.alias or self.name or self.address

    def _manager(self) -> Manager | None:
        return self._adapter.manager if self._adapter is not None else None

    def _detach(self) -> None:
        super()._detach()
        self._adapter = None

    def set_alias(self, alias: str) -> PendingCall:
        return self._set_property("Alias", alias)

    def set_trusted(self, trusted: bool) -> PendingCall:
        return self._set_property("Trusted", bool(trusted))

    def set_blocked(self, blocked: bool) -> PendingCall:
        return self._set_property("Blocked", bool(blocked))

    def connect(self) -> PendingCall:
        return self._call("Connect")

    def disconnect(self) -> PendingCall:
        return self._call("Disconnect")

    def pair(self) -> PendingCall:
        return self._call("Pair")

    def cancel_pairing(self) -> PendingCall:
        return self._call("CancelPairing")

    def connect_profile(self, uuid: str) -> PendingCall:
        return self._call("ConnectProfile", "s", (uuid,))

    def disconnect_profile(self, uuid: str) -> PendingCall:
        return self._call("DisconnectProfile", "s", (uuid,))
