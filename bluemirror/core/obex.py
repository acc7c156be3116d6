"""Object-transfer (OBEX) subsystem: agent registration and sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from bluemirror.core import calls
from bluemirror.core.config import load_config
from bluemirror.core.errors import ErrorKind
from bluemirror.core.events import EventSource
from bluemirror.core.job import Job
from bluemirror.core.model import (
    OBEX_AGENT_MANAGER_INTERFACE,
    OBEX_CLIENT_INTERFACE,
    OBEX_SERVICE,
    OBEX_SESSION_INTERFACE,
    Config,
    NameOwnerChanged,
    Notification,
    ObjectAdded,
    ObjectRemoved,
    ReturnType,
)
from bluemirror.core.pending import PendingCall, spawn
from bluemirror.transports.base import Bus
from bluemirror.transports.dbus import DBusTransport

LOGGER = logging.getLogger(__name__)


class ObexManager:
    """Tracks the OBEX service and forwards agent and session calls to it.

    The manager is operational while it is initialized, the service owns its
    bus name and the service objects have been loaded. Calls made before
    :meth:`init` completes fail with ``NOT_READY``; calls whose backing
    object is unavailable fail with ``INTERNAL_ERROR``.
    """

    def __init__(self, bus: Bus | None = None, *, config: Config | None = None) -> None:
        self._owns_bus = bus is None
        if bus is None:
            config = config or load_config()
            bus = DBusTransport.from_config(config, obex=True)
        self._bus = bus
        self.service = config.obex_service if config is not None else OBEX_SERVICE
        self._initialized = False
        self._running = False
        self._loaded = False
        self._agent_manager_path: str | None = None
        self._client_path: str | None = None
        self._sessions: set[str] = set()
        self._init_job: InitObexManagerJob | None = None
        self._load_job: Job | None = None

        self.operational_changed = EventSource()
        self.session_added = EventSource()
        self.session_removed = EventSource()

    def init(self) -> InitObexManagerJob:
        if self._init_job is None or self._init_job.is_error():
            self._init_job = InitObexManagerJob(self)
            self._init_job.start()
        return self._init_job

    def close(self) -> None:
        """Stop tracking the service and return to uninitialized.

        A bus this manager opened itself is disconnected on the running event
        loop. Without a running loop the connection stays open until the
        process exits.
        """
        for job in (self._init_job, self._load_job):
            if job is not None:
                job.abandon()
        self._init_job = None
        self._load_job = None
        was_operational = self.is_operational
        self._bus.remove_notification_handler(self._on_notification)
        self._initialized = False
        self._unload(announce=False)
        if was_operational:
            self.operational_changed.fire(False)
        if self._owns_bus:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                LOGGER.debug("No running event loop, bus connection left to close on exit")
            else:
                spawn(self._bus.disconnect(), loop=loop)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_operational(self) -> bool:
        return self._initialized and self._running and self._loaded

    def sessions(self) -> list[str]:
        return sorted(self._sessions)

    def register_agent(self, agent_path: str) -> PendingCall:
        return self._call(
            self._agent_manager_path,
            OBEX_AGENT_MANAGER_INTERFACE,
            "RegisterAgent",
            "o",
            (agent_path,),
        )

    def unregister_agent(self, agent_path: str) -> PendingCall:
        return self._call(
            self._agent_manager_path,
            OBEX_AGENT_MANAGER_INTERFACE,
            "UnregisterAgent",
            "o",
            (agent_path,),
        )

    def create_session(self, destination: str, args: Mapping[str, Any] | None = None) -> PendingCall:
        """Open a transfer session; resolves with the session object path."""
        return self._call(
            self._client_path,
            OBEX_CLIENT_INTERFACE,
            "CreateSession",
            "sa{sv}",
            (destination, dict(args or {})),
            return_type=ReturnType.OBJECT_PATH,
        )

    def remove_session(self, session_path: str) -> PendingCall:
        return self._call(self._client_path, OBEX_CLIENT_INTERFACE, "RemoveSession", "o", (session_path,))

    def _call(
        self,
        path: str | None,
        interface: str,
        member: str,
        signature: str,
        body: Iterable[Any],
        *,
        return_type: ReturnType = ReturnType.VOID,
    ) -> PendingCall:
        description = f"{interface.rsplit('.', 1)[-1]}.{member}"
        if not self._initialized:
            return PendingCall.failed(ErrorKind.NOT_READY, "ObexManager is not initialized", description=description)
        if path is None or not self.is_operational:
            return PendingCall.failed(ErrorKind.INTERNAL_ERROR, "ObexManager not operational!", description=description)
        return PendingCall(
            self._bus.call(self.service, path, interface, member, signature, tuple(body)),
            return_type,
            description=description,
        )

    def _load(self, objects: Mapping[str, Mapping[str, Any]]) -> None:
        for path in sorted(objects):
            self._track_object(path, objects[path], announce=False)
        self._loaded = True
        LOGGER.info("Loaded %s with %d session(s)", self.service, len(self._sessions))

    def _unload(self, *, announce: bool) -> None:
        sessions, self._sessions = sorted(self._sessions), set()
        if announce:
            for path in sessions:
                self.session_removed.fire(path)
        self._loaded = False
        self._agent_manager_path = None
        self._client_path = None

    def _finish_init(self, running: bool, objects: Mapping[str, Mapping[str, Any]]) -> ObexManager:
        self._running = running
        if running:
            self._load(objects)
        self._initialized = True
        LOGGER.info("ObexManager initialized (service %s)", "running" if running else "not running")
        if self.is_operational:
            self.operational_changed.fire(True)
        return self

    def _track_object(self, path: str, interfaces: Mapping[str, Any], *, announce: bool) -> None:
        if OBEX_AGENT_MANAGER_INTERFACE in interfaces:
            self._agent_manager_path = path
        if OBEX_CLIENT_INTERFACE in interfaces:
            self._client_path = path
        if OBEX_SESSION_INTERFACE in interfaces and path not in self._sessions:
            self._sessions.add(path)
            if announce:
                self.session_added.fire(path)

    def _on_notification(self, notification: Notification) -> None:
        if isinstance(notification, NameOwnerChanged):
            if notification.name == self.service:
                self._on_service_owner_changed(notification)
        elif isinstance(notification, ObjectAdded):
            if self._loaded:
                self._track_object(notification.path, notification.interfaces, announce=True)
        elif isinstance(notification, ObjectRemoved):
            if OBEX_SESSION_INTERFACE in notification.interfaces and notification.path in self._sessions:
                self._sessions.discard(notification.path)
                self.session_removed.fire(notification.path)

    def _on_service_owner_changed(self, notification: NameOwnerChanged) -> None:
        if not self._initialized:
            return
        if not notification.new_owner:
            LOGGER.warning("%s left the bus", self.service)
            was_operational = self.is_operational
            if self._load_job is not None:
                self._load_job.abandon()
                self._load_job = None
            self._running = False
            self._unload(announce=True)
            if was_operational:
                self.operational_changed.fire(False)
        elif not notification.old_owner:
            LOGGER.info("%s appeared on the bus, loading", self.service)
            self._running = True
            job = Job(
                [
                    lambda results: calls.managed_objects(self._bus, self.service),
                    lambda results: self._load(results[0]),
                ],
                description="LoadObexManagerJob",
            )
            job.on_complete(self._load_finished)
            self._load_job = job.start()

    def _load_finished(self, job: Job) -> None:
        if job is not self._load_job:
            return
        self._load_job = None
        if job.is_error():
            self._unload(announce=False)
        elif self.is_operational:
            self.operational_changed.fire(True)


class InitObexManagerJob(Job):
    """Connects, watches the service name and loads the service objects."""

    def __init__(self, manager: ObexManager) -> None:
        self._manager = manager
        super().__init__(
            [self._connect, self._subscribe, self._check_service, self._enumerate, self._finish],
            description="InitObexManagerJob",
        )

    def _connect(self, results: list[Any]) -> PendingCall:
        return calls.connect(self._manager._bus, self._manager._on_notification)

    def _subscribe(self, results: list[Any]) -> list[PendingCall]:
        return calls.subscribe(self._manager._bus, self._manager.service)

    def _check_service(self, results: list[Any]) -> PendingCall:
        return calls.name_has_owner(self._manager._bus, self._manager.service)

    def _enumerate(self, results: list[Any]) -> PendingCall | dict[str, Any]:
        if not results[2]:
            return {}
        return calls.managed_objects(self._manager._bus, self._manager.service)

    def _finish(self, results: list[Any]) -> ObexManager:
        return self._manager._finish_init(bool(results[2]), results[3])
