"""Process-wide registry mirroring the remote adapter and device tree.

There is at most one :class:`Manager` per process. :meth:`Manager.acquire`
creates it on first use and returns the startup job; every acquisition must
be paired with :meth:`Manager.release`. When the last reference is released
the mirror is cleared and the next acquisition starts from scratch.

Startup runs as an :class:`InitManagerJob`:

1. connect the bus and attach the notification handler,
2. make sure the service owns its bus name,
3. enumerate the remote objects,
4. build the mirrors from the enumeration, then subscribe to change signals,
5. switch to operational.

Population is silent: consumers learn about the initial graph from
``operational_changed(True)`` and read it through :meth:`Manager.adapters`.
Every structural change after that fires its own event.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any, ClassVar

from bluemirror.core import calls
from bluemirror.core.adapter import Adapter
from bluemirror.core.config import load_config
from bluemirror.core.device import Device
from bluemirror.core.errors import ErrorKind, OperationError
from bluemirror.core.events import EventSource
from bluemirror.core.job import Job
from bluemirror.core.model import (
    ADAPTER_INTERFACE,
    AGENT_MANAGER_INTERFACE,
    BLUEZ_SERVICE,
    DEVICE_INTERFACE,
    PROPERTIES_INTERFACE,
    Config,
    ManagerState,
    NameOwnerChanged,
    Notification,
    ObjectAdded,
    ObjectRemoved,
    PropertiesChanged,
    RegisterCapability,
    ReturnType,
)
from bluemirror.core.pending import PendingCall, spawn
from bluemirror.transports.base import Bus
from bluemirror.transports.dbus import DBusTransport

LOGGER = logging.getLogger(__name__)

AGENT_MANAGER_PATH = "/org/bluez"


class Manager:
    _instance: ClassVar[Manager | None] = None
    _references: ClassVar[int] = 0

    def __init__(self, bus: Bus, *, service: str = BLUEZ_SERVICE, owns_bus: bool = False) -> None:
        self._bus = bus
        self.service = service
        self._owns_bus = owns_bus
        self._state = ManagerState.UNACQUIRED
        self._acquired = False
        self._adapters: dict[str, Adapter] = {}
        # Devices announced before their adapter, keyed by adapter path.
        self._orphans: dict[str, dict[str, dict[str, Any]]] = {}
        self._usable: Adapter | None = None
        self._init_job: InitManagerJob | None = None
        self._reload_job: Job | None = None

        self.operational_changed = EventSource()
        self.adapter_added = EventSource()
        self.adapter_removed = EventSource()
        self.adapter_changed = EventSource()
        self.usable_adapter_changed = EventSource()
        self.all_adapters_removed = EventSource()

        self._dispatch = {
            ObjectAdded: self._on_object_added,
            ObjectRemoved: self._on_object_removed,
            PropertiesChanged: self._on_properties_changed,
            NameOwnerChanged: self._on_name_owner_changed,
        }

    # -- lifecycle -------------------------------------------------------

    @classmethod
    def acquire(cls, bus: Bus | None = None, *, config: Config | None = None) -> InitManagerJob:
        """Take a reference on the process-wide manager and start it if needed.

        The returned job resolves with the manager once it is operational. A
        failed startup leaves the reference in place; acquiring again retries.
        """
        if cls._instance is None:
            owns_bus = bus is None
            if bus is None:
                config = config or load_config()
                bus = DBusTransport.from_config(config)
            service = config.service if config is not None else BLUEZ_SERVICE
            cls._instance = cls(bus, service=service, owns_bus=owns_bus)
        cls._references += 1
        return cls._instance._start()

    @classmethod
    def instance(cls) -> Manager | None:
        return cls._instance

    def release(self) -> None:
        """Drop one reference; the last one tears the mirror down.

        A bus the manager opened itself is disconnected on the running event
        loop. Without a running loop the connection stays open until the
        process exits, so release from inside the loop that acquired.
        """
        cls = type(self)
        if cls._instance is not self:
            LOGGER.debug("Ignoring release of a stale manager")
            return
        cls._references -= 1
        if cls._references > 0:
            return
        cls._instance = None
        cls._references = 0
        self._teardown()

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def is_operational(self) -> bool:
        return self._state is ManagerState.OPERATIONAL

    def _start(self) -> InitManagerJob:
        if self._init_job is None or self._init_job.is_error():
            self._init_job = InitManagerJob(self)
            self._init_job.start()
        return self._init_job

    def _set_state(self, state: ManagerState) -> None:
        if state is not self._state:
            LOGGER.info("Manager %s -> %s", self._state.value, state.value)
            self._state = state

    def _set_operational(self, *, announce_usable: bool = False) -> Manager:
        """Switch to operational.

        On first startup the usable adapter is recorded silently. After a
        service restart consumers last saw ``usable_adapter_changed(None)``,
        so the reloaded value is announced.
        """
        self._acquired = True
        self._set_state(ManagerState.OPERATIONAL)
        if not announce_usable:
            self._usable = self.usable_adapter()
        self.operational_changed.fire(True)
        if announce_usable:
            self._update_usable()
        return self

    def _startup_failed(self, job: InitManagerJob) -> None:
        if job is not self._init_job:
            return
        self._bus.remove_notification_handler(self._on_notification)
        self._clear(announce=False)
        self._set_state(ManagerState.UNACQUIRED)
        self._close_bus()

    def _close_bus(self) -> None:
        if not self._owns_bus:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("No running event loop, bus connection left to close on exit")
        else:
            spawn(self._bus.disconnect(), loop=loop)

    def _teardown(self) -> None:
        for job in (self._init_job, self._reload_job):
            if job is not None:
                job.abandon()
        was_operational = self.is_operational
        self._bus.remove_notification_handler(self._on_notification)
        self._clear(announce=False)
        self._acquired = False
        self._set_state(ManagerState.UNACQUIRED)
        if was_operational:
            self.operational_changed.fire(False)
        self._close_bus()

    def _clear(self, *, announce: bool) -> None:
        for path in sorted(self._adapters):
            self._remove_adapter(path, announce=announce)
        self._orphans.clear()
        self._usable = None

    # -- queries ---------------------------------------------------------

    def adapters(self) -> list[Adapter]:
        return [self._adapters[path] for path in sorted(self._adapters)]

    def devices(self) -> list[Device]:
        return [device for adapter in self.adapters() for device in adapter.devices()]

    def adapter_for_path(self, path: str) -> Adapter | None:
        return self._adapters.get(path)

    def adapter_for_address(self, address: str) -> Adapter | None:
        wanted = address.upper()
        return next((a for a in self.adapters() if a.address.upper() == wanted), None)

    def device_for_path(self, path: str) -> Device | None:
        for adapter in self._adapters.values():
            device = adapter.device_for_path(path)
            if device is not None:
                return device
        return None

    def usable_adapter(self) -> Adapter | None:
        """First powered adapter, else the first adapter, else None."""
        adapters = self.adapters()
        for adapter in adapters:
            if adapter.powered:
                return adapter
        return adapters[0] if adapters else None

    # -- remote operations -----------------------------------------------

    def remote_call(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Iterable[Any] = (),
        *,
        return_type: ReturnType = ReturnType.VOID,
        description: str = "",
    ) -> PendingCall:
        if not self.is_operational:
            return PendingCall.failed(
                ErrorKind.NOT_READY,
                f"Manager is not operational ({self._state.value})",
                description=description or member,
            )
        return PendingCall(
            self._bus.call(self.service, path, interface, member, signature, tuple(body)),
            return_type,
            description=description or f"{member} on {path}",
        )

    def load_adapters(self) -> LoadAdaptersJob:
        """Re-read every adapter's properties; resolves with the adapter list."""
        return LoadAdaptersJob(self).start()

    def register_agent(self, agent_path: str, capability: RegisterCapability) -> PendingCall:
        return self.remote_call(
            AGENT_MANAGER_PATH,
            AGENT_MANAGER_INTERFACE,
            "RegisterAgent",
            "os",
            (agent_path, capability.remote_name),
        )

    def unregister_agent(self, agent_path: str) -> PendingCall:
        return self.remote_call(AGENT_MANAGER_PATH, AGENT_MANAGER_INTERFACE, "UnregisterAgent", "o", (agent_path,))

    def request_default_agent(self, agent_path: str) -> PendingCall:
        return self.remote_call(
            AGENT_MANAGER_PATH,
            AGENT_MANAGER_INTERFACE,
            "RequestDefaultAgent",
            "o",
            (agent_path,),
        )

    # -- mirror maintenance ----------------------------------------------

    def _populate(self, objects: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None:
        for path in sorted(objects):
            interfaces = objects[path]
            if ADAPTER_INTERFACE in interfaces:
                self._add_adapter(path, interfaces[ADAPTER_INTERFACE], announce=False)
        for path in sorted(objects):
            interfaces = objects[path]
            if DEVICE_INTERFACE in interfaces:
                self._add_device(path, interfaces[DEVICE_INTERFACE], announce=False)
        LOGGER.info(
            "Populated %d adapter(s) and %d device(s) from %s",
            len(self._adapters),
            len(self.devices()),
            self.service,
        )

    def _on_notification(self, notification: Notification) -> None:
        handler = self._dispatch.get(type(notification))
        if handler is None:
            return
        LOGGER.debug("Applying %s", notification)
        handler(notification)

    # Changes racing startup or a reload are applied without events; consumers
    # see the result through operational_changed(True).

    def _on_object_added(self, notification: ObjectAdded) -> None:
        interfaces = notification.interfaces
        announce = self.is_operational
        if ADAPTER_INTERFACE in interfaces:
            self._add_adapter(notification.path, interfaces[ADAPTER_INTERFACE], announce=announce)
        if DEVICE_INTERFACE in interfaces:
            self._add_device(notification.path, interfaces[DEVICE_INTERFACE], announce=announce)

    def _on_object_removed(self, notification: ObjectRemoved) -> None:
        announce = self.is_operational
        if DEVICE_INTERFACE in notification.interfaces:
            self._remove_device(notification.path, announce=announce)
        if ADAPTER_INTERFACE in notification.interfaces:
            self._remove_adapter(notification.path, announce=announce)

    def _on_properties_changed(self, notification: PropertiesChanged) -> None:
        announce = self.is_operational
        if notification.interface == ADAPTER_INTERFACE:
            adapter = self._adapters.get(notification.path)
            if adapter is not None:
                adapter.apply_properties(notification.changed, notification.invalidated, announce=announce)
        elif notification.interface == DEVICE_INTERFACE:
            device = self.device_for_path(notification.path)
            if device is not None:
                device.apply_properties(notification.changed, notification.invalidated, announce=announce)
                return
            for parked in self._orphans.values():
                if notification.path in parked:
                    parked[notification.path].update(notification.changed)
                    for name in notification.invalidated:
                        parked[notification.path].pop(name, None)

    def _on_name_owner_changed(self, notification: NameOwnerChanged) -> None:
        if notification.name != self.service or not self._acquired:
            return
        if not notification.new_owner:
            self._service_lost()
        elif not notification.old_owner:
            self._service_appeared()

    def _service_lost(self) -> None:
        LOGGER.warning("%s left the bus", self.service)
        if self._reload_job is not None:
            self._reload_job.abandon()
            self._reload_job = None
        was_operational = self.is_operational
        self._clear(announce=True)
        self._set_state(ManagerState.ACQUIRING)
        if was_operational:
            self.operational_changed.fire(False)

    def _service_appeared(self) -> None:
        if self._state is not ManagerState.ACQUIRING:
            return
        LOGGER.info("%s is back on the bus, reloading", self.service)
        self._set_state(ManagerState.POPULATING)
        job = Job(
            [
                lambda results: calls.managed_objects(self._bus, self.service),
                lambda results: self._populate(results[0]),
                lambda results: self._set_operational(announce_usable=True),
            ],
            description="ReloadManagerJob",
        )
        job.on_complete(self._reload_finished)
        self._reload_job = job.start()

    def _reload_finished(self, job: Job) -> None:
        if job is not self._reload_job:
            return
        self._reload_job = None
        if job.is_error():
            self._clear(announce=False)
            self._set_state(ManagerState.ACQUIRING)

    def _add_adapter(self, path: str, properties: Mapping[str, Any], *, announce: bool = True) -> Adapter:
        adapter = self._adapters.get(path)
        if adapter is not None:
            adapter.apply_properties(properties, announce=announce)
            return adapter
        adapter = Adapter(path, properties, self)
        adapter.changed += self._on_adapter_changed
        self._adapters[path] = adapter
        LOGGER.info("Adapter %s (%s) added", path, adapter.address)
        if announce:
            self.adapter_added.fire(adapter)
        for device_path, device_properties in sorted(self._orphans.pop(path, {}).items()):
            adapter._add_device(device_path, device_properties, announce=announce)
        if announce:
            self._update_usable()
        return adapter

    def _remove_adapter(self, path: str, *, announce: bool = True) -> None:
        adapter = self._adapters.pop(path, None)
        if adapter is None:
            return
        adapter.changed -= self._on_adapter_changed
        adapter._detach(announce=announce)
        LOGGER.info("Adapter %s removed", path)
        if not announce:
            return
        self.adapter_removed.fire(adapter)
        self._update_usable()
        if not self._adapters:
            self.all_adapters_removed.fire()

    def _add_device(self, path: str, properties: Mapping[str, Any], *, announce: bool = True) -> None:
        existing = self.device_for_path(path)
        if existing is not None:
            existing.apply_properties(properties, announce=announce)
            return
        adapter_path = properties.get("Adapter")
        if not adapter_path:
            LOGGER.warning("Ignoring device %s without an Adapter property", path)
            return
        adapter = self._adapters.get(str(adapter_path))
        if adapter is None:
            LOGGER.debug("Parking device %s until adapter %s appears", path, adapter_path)
            self._orphans.setdefault(str(adapter_path), {})[path] = dict(properties)
            return
        adapter._add_device(path, properties, announce=announce)

    def _remove_device(self, path: str, *, announce: bool = True) -> None:
        device = self.device_for_path(path)
        if device is not None and device.adapter is not None:
            device.adapter._remove_device(path, announce=announce)
            return
        for parked in self._orphans.values():
            parked.pop(path, None)

    def _on_adapter_changed(self, adapter: Adapter) -> None:
        self.adapter_changed.fire(adapter)
        self._update_usable()

    def _update_usable(self) -> None:
        if not self.is_operational:
            return
        usable = self.usable_adapter()
        if usable is not self._usable:
            self._usable = usable
            LOGGER.debug("Usable adapter is now %s", usable.ubi if usable else None)
            self.usable_adapter_changed.fire(usable)


class InitManagerJob(Job):
    """Startup sequence that takes a manager from unacquired to operational."""

    def __init__(self, manager: Manager) -> None:
        self._manager = manager
        super().__init__(
            [
                self._connect,
                self._check_service,
                self._enumerate,
                self._populate_and_subscribe,
                self._finish,
            ],
            description="InitManagerJob",
        )

    @property
    def manager(self) -> Manager:
        return self._manager

    def _connect(self, results: list[Any]) -> PendingCall:
        self._manager._set_state(ManagerState.ACQUIRING)
        return calls.connect(self._manager._bus, self._manager._on_notification)

    def _check_service(self, results: list[Any]) -> PendingCall:
        return calls.name_has_owner(self._manager._bus, self._manager.service)

    def _enumerate(self, results: list[Any]) -> PendingCall:
        if not results[1]:
            raise OperationError(ErrorKind.NOT_READY, f"{self._manager.service} is not running")
        self._manager._set_state(ManagerState.POPULATING)
        return calls.managed_objects(self._manager._bus, self._manager.service)

    def _populate_and_subscribe(self, results: list[Any]) -> list[PendingCall]:
        self._manager._populate(results[2])
        return calls.subscribe(self._manager._bus, self._manager.service)

    def _finish(self, results: list[Any]) -> Manager:
        return self._manager._set_operational()

    def _fail(self, kind: ErrorKind, text: str = "") -> None:
        super()._fail(kind, text)
        self._manager._startup_failed(self)


class LoadAdaptersJob(Job):
    """Fetches every adapter's properties concurrently and applies them."""

    def __init__(self, manager: Manager) -> None:
        self._manager = manager
        self._paths: list[str] = []
        super().__init__([self._fetch, self._apply], description="LoadAdaptersJob")

    def _fetch(self, results: list[Any]) -> list[PendingCall]:
        if not self._manager.is_operational:
            raise OperationError(ErrorKind.NOT_READY, "Manager is not operational")
        self._paths = [adapter.ubi for adapter in self._manager.adapters()]
        return [
            self._manager.remote_call(
                path,
                PROPERTIES_INTERFACE,
                "GetAll",
                "s",
                (ADAPTER_INTERFACE,),
                return_type=ReturnType.VALUE,
            )
            for path in self._paths
        ]

    def _apply(self, results: list[Any]) -> list[Adapter]:
        for path, properties in zip(self._paths, results[0]):
            adapter = self._manager.adapter_for_path(path)
            if adapter is not None:
                adapter.apply_properties(properties)
        return self._manager.adapters()
