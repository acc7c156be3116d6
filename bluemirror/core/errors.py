"""Error taxonomy and exceptions for bluemirror."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Outcome kinds a failed operation can report."""

    NOT_READY = "NotReady"
    INVALID_ARGUMENTS = "InvalidArguments"
    ALREADY_EXISTS = "AlreadyExists"
    DOES_NOT_EXIST = "DoesNotExist"
    FAILED = "Failed"
    NOT_AUTHORIZED = "NotAuthorized"
    INTERNAL_ERROR = "InternalError"
    TIMEOUT = "Timeout"

    @classmethod
    def from_remote(cls, error_name: str | None) -> ErrorKind:
        """Map a remote error name such as ``org.bluez.Error.NotReady``."""
        if not error_name:
            return cls.FAILED
        return _REMOTE_ALIASES.get(error_name.rsplit(".", 1)[-1], cls.FAILED)


_REMOTE_ALIASES = {
    "NotReady": ErrorKind.NOT_READY,
    "InvalidArguments": ErrorKind.INVALID_ARGUMENTS,
    "InvalidArgs": ErrorKind.INVALID_ARGUMENTS,
    "AlreadyExists": ErrorKind.ALREADY_EXISTS,
    "DoesNotExist": ErrorKind.DOES_NOT_EXIST,
    "UnknownObject": ErrorKind.DOES_NOT_EXIST,
    "UnknownMethod": ErrorKind.DOES_NOT_EXIST,
    "NotAuthorized": ErrorKind.NOT_AUTHORIZED,
    "AccessDenied": ErrorKind.NOT_AUTHORIZED,
    "AuthenticationFailed": ErrorKind.NOT_AUTHORIZED,
    "Failed": ErrorKind.FAILED,
    "NoReply": ErrorKind.TIMEOUT,
    "Timeout": ErrorKind.TIMEOUT,
    "TimedOut": ErrorKind.TIMEOUT,
}


class BluemirrorError(Exception):
    """Base error for bluemirror."""


class ConfigError(BluemirrorError):
    """Base configuration error."""


class ConfigLoadError(ConfigError):
    """Raised when a config file cannot be read."""


class ConfigValidationError(ConfigError):
    """Raised when a config document does not conform to schema."""


class OperationError(BluemirrorError):
    """Raised when the result of a failed operation is requested."""

    def __init__(self, kind: ErrorKind, text: str = "") -> None:
        super().__init__(f"{kind.value}: {text}" if text else kind.value)
        self.kind = kind
        self.text = text


class AdapterSelectionError(BluemirrorError):
    """Raised when no adapter matches a path or address given by the user."""


class TransportError(BluemirrorError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the bus connection cannot be established."""


class TransportTimeoutError(TransportError):
    """Raised when a remote call gets no reply in time."""


class RemoteError(TransportError):
    """Raised when the remote service replies with an error message."""

    def __init__(self, name: str, text: str = "") -> None:
        super().__init__(f"{name}: {text}" if text else name)
        self.name = name
        self.text = text
