"""Shared machinery for local mirrors of remote objects."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from bluemirror.core.errors import ErrorKind
from bluemirror.core.events import EventSource
from bluemirror.core.model import PROPERTIES_INTERFACE, ReturnType
from bluemirror.core.pending import PendingCall

if TYPE_CHECKING:
    from bluemirror.core.manager import Manager

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertyField:
    remote: str
    attr: str
    convert: Callable[[Any], Any]
    default: Any = None


def as_uuids(value: Iterable[Any]) -> tuple[str, ...]:
    return tuple(str(uuid).lower() for uuid in value)


def as_text(value: Any) -> str:
    return str(value)


def mirrored(attr: str) -> property:
    """Read-only accessor for one mirrored attribute."""
    return property(lambda self: self._values[attr], doc=f"Last known remote value of {attr}.")


class RemoteObject(ABC):
    """A local object whose attributes follow one remote object.

    Attribute changes only ever come from :meth:`apply_properties`, which the
    manager calls for enumeration results and for property notifications.
    Operations go out as :class:`PendingCall` handles and never touch the
    cached values themselves.
    """

    INTERFACE: ClassVar[str] = ""
    FIELDS: ClassVar[tuple[PropertyField, ...]] = ()
    _BY_REMOTE: ClassVar[dict[str, PropertyField]] = {}

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._BY_REMOTE = {field.remote: field for field in cls.FIELDS}

    def __init__(self, ubi: str, properties: Mapping[str, Any] | None = None) -> None:
        self._ubi = ubi
        self._values: dict[str, Any] = {field.attr: field.default for field in self.FIELDS}
        self._valid = True
        self.property_changed = EventSource()
        self.changed = EventSource()
        if properties:
            self._update(properties, ())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._ubi}>"

    @property
    def ubi(self) -> str:
        """Object path of the remote object."""
        return self._ubi

    def is_valid(self) -> bool:
        return self._valid

    def apply_properties(
        self,
        changed: Mapping[str, Any],
        invalidated: Iterable[str] = (),
        *,
        announce: bool = True,
    ) -> tuple[str, ...]:
        """Apply one notification worth of changes and emit change events.

        Attributes not named in ``changed`` or ``invalidated`` keep their
        value. With ``announce`` off the values change without events.
        Returns the attributes that actually changed.
        """
        updates = self._update(changed, invalidated)
        if not announce:
            return updates
        for attr in updates:
            self.property_changed.fire(self, attr, self._values[attr])
        if updates:
            self.changed.fire(self)
        return updates

    def _update(self, changed: Mapping[str, Any], invalidated: Iterable[str]) -> tuple[str, ...]:
        updates: list[str] = []
        for name, raw in changed.items():
            field = self._BY_REMOTE.get(name)
            if field is None:
                continue
            try:
                value = field.convert(raw)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Ignoring bad %s value %r on %s: %s", name, raw, self._ubi, exc)
                continue
            if self._values[field.attr] != value:
                self._values[field.attr] = value
                updates.append(field.attr)
        for name in invalidated:
            field = self._BY_REMOTE.get(name)
            if field is not None and self._values[field.attr] != field.default:
                self._values[field.attr] = field.default
                updates.append(field.attr)
        return tuple(updates)

    @abstractmethod
    def _manager(self) -> Manager | None:
        """Manager that issues calls for this object, or None once detached."""

    def _detach(self) -> None:
        self._valid = False

    def _call(
        self,
        member: str,
        signature: str = "",
        body: Iterable[Any] = (),
        *,
        interface: str | None = None,
        return_type: ReturnType = ReturnType.VOID,
    ) -> PendingCall:
        description = f"{member} on {self._ubi}"
        manager = self._manager()
        if manager is None or not self._valid:
            return PendingCall.failed(
                ErrorKind.DOES_NOT_EXIST,
                f"{type(self).__name__} {self._ubi} has been removed",
                description=description,
            )
        return manager.remote_call(
            self._ubi,
            interface or self.INTERFACE,
            member,
            signature,
            body,
            return_type=return_type,
            description=description,
        )

    def _set_property(self, name: str, value: Any) -> PendingCall:
        return self._call(
            "Set",
            "ssv",
            (self.INTERFACE, name, value),
            interface=PROPERTIES_INTERFACE,
        )
