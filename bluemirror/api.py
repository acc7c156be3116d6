"""Stable public API for building tooling on top of bluemirror.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from bluemirror.core.adapter import Adapter
from bluemirror.core.config import load_config
from bluemirror.core.device import Device
from bluemirror.core.errors import (
    AdapterSelectionError,
    BluemirrorError,
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    ErrorKind,
    OperationError,
    RemoteError,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from bluemirror.core.job import Job
from bluemirror.core.manager import InitManagerJob, LoadAdaptersJob, Manager
from bluemirror.core.model import (
    CallState,
    Config,
    ManagerState,
    NameOwnerChanged,
    ObjectAdded,
    ObjectRemoved,
    PropertiesChanged,
    RegisterCapability,
    ReturnType,
)
from bluemirror.core.obex import InitObexManagerJob, ObexManager
from bluemirror.core.pending import PendingCall
from bluemirror.transports.base import Bus
from bluemirror.transports.dbus import DBusTransport

__all__ = [
    "AdapterSelectionError",
    "BluemirrorError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ErrorKind",
    "OperationError",
    "RemoteError",
    "TransportError",
    "TransportConnectError",
    "TransportTimeoutError",
    "Adapter",
    "Device",
    "Manager",
    "InitManagerJob",
    "LoadAdaptersJob",
    "ObexManager",
    "InitObexManagerJob",
    "Job",
    "PendingCall",
    "CallState",
    "Config",
    "ManagerState",
    "NameOwnerChanged",
    "ObjectAdded",
    "ObjectRemoved",
    "PropertiesChanged",
    "RegisterCapability",
    "ReturnType",
    "Bus",
    "DBusTransport",
    "load_config",
    "get_manager",
    "manager_session",
]


async def get_manager(bus: Bus | None = None, *, config: Config | None = None) -> Manager:
    """Acquire the process-wide manager and wait until it is operational.

    The caller owns one reference and must call :meth:`Manager.release`. If
    startup fails the reference is dropped again and :class:`OperationError`
    is raised with the failure kind.
    """
    job = Manager.acquire(bus, config=config)
    await job
    if job.is_error():
        job.manager.release()
        job.result()
    return job.manager


@asynccontextmanager
async def manager_session(bus: Bus | None = None, *, config: Config | None = None) -> AsyncIterator[Manager]:
    """``async with`` form of :func:`get_manager` that releases on exit."""
    manager = await get_manager(bus, config=config)
    try:
        yield manager
    finally:
        manager.release()
