from __future__ import annotations

import asyncio

import pytest
from conftest import HCI0, SPEAKER, FakeBus, adapter_props, device_props

from bluemirror.core.adapter import Adapter
from bluemirror.core.errors import ErrorKind
from bluemirror.core.manager import Manager
from bluemirror.core.mirror import RemoteObject
from bluemirror.core.model import CallState


def _adapter() -> Adapter:
    return Adapter(HCI0, adapter_props("AA:BB:CC:DD:EE:01"), Manager(FakeBus()))


def test_initial_properties_are_converted() -> None:
    adapter = _adapter()
    assert adapter.address == "AA:BB:CC:DD:EE:01"
    assert adapter.powered is True
    assert adapter.discoverable_timeout == 180
    assert adapter.uuids == ("0000110e-0000-1000-8000-00805f9b34fb",)
    assert adapter.is_valid()


def test_last_value_per_attribute_wins() -> None:
    adapter = _adapter()
    fired: list[tuple[str, object]] = []
    adapter.property_changed += lambda obj, attr, value: fired.append((attr, value))

    adapter.apply_properties({"Alias": "Kitchen", "Powered": False})
    adapter.apply_properties({"Alias": "Office"})
    adapter.apply_properties({"Powered": True})

    assert adapter.alias == "Office"
    assert adapter.powered is True
    assert fired == [("alias", "Kitchen"), ("powered", False), ("alias", "Office"), ("powered", True)]


def test_changed_fires_once_per_notification() -> None:
    adapter = _adapter()
    changed: list[Adapter] = []
    adapter.changed += changed.append

    adapter.apply_properties({"Alias": "Kitchen", "Discoverable": True, "Discovering": True})
    assert changed == [adapter]

    adapter.apply_properties({"Alias": "Kitchen"})
    assert changed == [adapter]


def test_unknown_and_bad_values_are_skipped() -> None:
    adapter = _adapter()
    updated = adapter.apply_properties({"Roles": ["central"], "DiscoverableTimeout": "soon", "Alias": "Den"})
    assert updated == ("alias",)
    assert adapter.discoverable_timeout == 180


def test_invalidated_properties_reset_to_defaults() -> None:
    adapter = _adapter()
    adapter.apply_properties({}, ["Modalias"])
    assert adapter.modalias == ""


def test_device_lookup_and_friendly_name() -> None:
    adapter = _adapter()
    device = adapter._add_device(SPEAKER, device_props("40:79:6A:0C:39:75", HCI0, Alias=""), announce=False)
    assert adapter.device_for_path(SPEAKER) is device
    assert adapter.device_for_address("40:79:6a:0c:39:75") is device
    assert device.adapter is adapter
    assert device.friendly_name() == "Speaker"
    assert device.rssi is None


def test_removed_device_is_detached_and_rejects_operations() -> None:
    bus = FakeBus()
    adapter = Adapter(HCI0, adapter_props("AA:BB:CC:DD:EE:01"), Manager(bus))
    device = adapter._add_device(SPEAKER, device_props("40:79:6A:0C:39:75", HCI0))
    removed = []
    adapter.device_removed += removed.append

    adapter._remove_device(SPEAKER)

    assert removed == [device]
    assert not device.is_valid()
    assert device.adapter is None
    call = device.connect()
    assert call.state is CallState.FAILED
    assert call.error is ErrorKind.DOES_NOT_EXIST
    assert bus.calls == []


def test_remove_device_of_other_adapter_fails_locally() -> None:
    bus = FakeBus()
    manager = Manager(bus)
    first = Adapter(HCI0, adapter_props("AA:BB:CC:DD:EE:01"), manager)
    second = Adapter("/org/bluez/hci1", adapter_props("AA:BB:CC:DD:EE:02"), manager)
    device = second._add_device("/org/bluez/hci1/dev_11", device_props("11:22:33:44:55:66", "/org/bluez/hci1"))

    call = first.remove_device(device)

    assert call.error is ErrorKind.DOES_NOT_EXIST
    assert bus.calls == []


def test_operations_before_manager_is_operational_fail_not_ready() -> None:
    bus = FakeBus()
    adapter = Adapter(HCI0, adapter_props("AA:BB:CC:DD:EE:01"), Manager(bus))

    async def scenario():
        call = adapter.set_powered(False)
        await call
        return call

    call = asyncio.run(scenario())
    assert call.error is ErrorKind.NOT_READY
    assert bus.calls == []


def test_silent_application_updates_without_events() -> None:
    adapter = _adapter()
    fired: list[object] = []
    adapter.changed += fired.append
    adapter.property_changed += lambda obj, attr, value: fired.append(attr)

    updated = adapter.apply_properties({"Alias": "Den", "Powered": False}, announce=False)

    assert updated == ("alias", "powered")
    assert adapter.alias == "Den"
    assert adapter.powered is False
    assert fired == []


def test_remote_object_requires_a_manager_lookup() -> None:
    with pytest.raises(TypeError):
        RemoteObject(HCI0, {})
