from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBus

from bluemirror.core.errors import ErrorKind
from bluemirror.core.model import (
    OBEX_AGENT_MANAGER_INTERFACE,
    OBEX_CLIENT_INTERFACE,
    OBEX_SERVICE,
    OBEX_SESSION_INTERFACE,
    NameOwnerChanged,
    ObjectAdded,
    ObjectRemoved,
)
from bluemirror.core.obex import ObexManager

SESSION = "/org/bluez/obex/client/session0"


@pytest.fixture
def obex_bus() -> FakeBus:
    return FakeBus(
        {
            "/org/bluez/obex": {
                OBEX_AGENT_MANAGER_INTERFACE: {},
                OBEX_CLIENT_INTERFACE: {},
            }
        }
    )


async def _init(bus: FakeBus) -> ObexManager:
    manager = ObexManager(bus)
    job = manager.init()
    await job
    return job.result()


def test_calls_before_init_fail_not_ready(obex_bus: FakeBus) -> None:
    manager = ObexManager(obex_bus)
    assert not manager.is_initialized
    assert manager.register_agent("/test/obex_agent").error is ErrorKind.NOT_READY
    assert manager.create_session("11:22:33:44:55:66", {"Target": "opp"}).error is ErrorKind.NOT_READY
    assert obex_bus.calls == []


def test_init_without_service_succeeds_but_is_not_operational() -> None:
    bus = FakeBus(running=False)

    async def scenario() -> ObexManager:
        return await _init(bus)

    manager = asyncio.run(scenario())
    assert manager.is_initialized
    assert not manager.is_operational
    assert manager.remove_session(SESSION).error is ErrorKind.INTERNAL_ERROR
    assert "GetManagedObjects" not in bus.members()


def test_create_session_returns_object_path(obex_bus: FakeBus) -> None:
    obex_bus.replies["CreateSession"] = [SESSION]

    async def scenario():
        manager = await _init(obex_bus)
        assert manager.is_operational
        call = manager.create_session("11:22:33:44:55:66", {"Target": "opp"})
        await call
        return call

    call = asyncio.run(scenario())
    assert call.result() == SESSION
    assert obex_bus.calls[-1] == (
        OBEX_SERVICE,
        "/org/bluez/obex",
        OBEX_CLIENT_INTERFACE,
        "CreateSession",
        ("11:22:33:44:55:66", {"Target": "opp"}),
    )


def test_agent_registration_targets_agent_manager(obex_bus: FakeBus) -> None:
    async def scenario() -> None:
        manager = await _init(obex_bus)
        await manager.register_agent("/test/obex_agent")
        await manager.unregister_agent("/test/obex_agent")

    asyncio.run(scenario())
    assert [call[3:] for call in obex_bus.calls[-2:]] == [
        ("RegisterAgent", ("/test/obex_agent",)),
        ("UnregisterAgent", ("/test/obex_agent",)),
    ]


def test_sessions_follow_notifications(obex_bus: FakeBus) -> None:
    async def scenario() -> tuple[ObexManager, list[str], list[str]]:
        manager = await _init(obex_bus)
        added: list[str] = []
        removed: list[str] = []
        manager.session_added += added.append
        manager.session_removed += removed.append
        obex_bus.emit(ObjectAdded(SESSION, {OBEX_SESSION_INTERFACE: {"Destination": "11:22:33:44:55:66"}}))
        assert manager.sessions() == [SESSION]
        obex_bus.emit(ObjectRemoved(SESSION, (OBEX_SESSION_INTERFACE,)))
        return manager, added, removed

    manager, added, removed = asyncio.run(scenario())
    assert added == [SESSION]
    assert removed == [SESSION]
    assert manager.sessions() == []


def test_service_loss_and_return(obex_bus: FakeBus) -> None:
    obex_bus.objects["/org/bluez/obex/client/session3"] = {OBEX_SESSION_INTERFACE: {}}

    async def scenario() -> tuple[ObexManager, list[bool], list[str]]:
        manager = await _init(obex_bus)
        flags: list[bool] = []
        removed: list[str] = []
        manager.operational_changed += flags.append
        manager.session_removed += removed.append

        obex_bus.emit(NameOwnerChanged(OBEX_SERVICE, ":1.40", ""))
        assert not manager.is_operational
        assert manager.create_session("11:22:33:44:55:66").error is ErrorKind.INTERNAL_ERROR

        back = asyncio.Event()
        manager.operational_changed += lambda flag: back.set()
        obex_bus.emit(NameOwnerChanged(OBEX_SERVICE, "", ":1.41"))
        await asyncio.wait_for(back.wait(), 1.0)
        return manager, flags, removed

    manager, flags, removed = asyncio.run(scenario())
    assert flags == [False, True]
    assert removed == ["/org/bluez/obex/client/session3"]
    assert manager.is_operational
    assert manager.sessions() == ["/org/bluez/obex/client/session3"]


def test_close_drops_state_and_rejects_calls(obex_bus: FakeBus) -> None:
    async def scenario() -> tuple[ObexManager, list[bool]]:
        manager = await _init(obex_bus)
        flags: list[bool] = []
        manager.operational_changed += flags.append
        manager.close()
        return manager, flags

    manager, flags = asyncio.run(scenario())
    assert flags == [False]
    assert not manager.is_initialized
    assert obex_bus.handlers == []
    assert obex_bus.disconnects == 0
    assert manager.register_agent("/test/obex_agent").error is ErrorKind.NOT_READY
