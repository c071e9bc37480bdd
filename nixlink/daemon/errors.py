"""Error taxonomy for the daemon connection.

Every error raised here is fatal to the connection it came from. The binary
stream has no resynchronization marker, so once a read or write fails the
only remedy is to discard the connection and open a new one.
"""

from typing import List, Optional


class StoreError(Exception):
    """Base class for all errors raised while talking to the daemon."""


class TransportError(StoreError):
    """The underlying byte stream failed (connect, read, write, flush, spawn)."""

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}" if message else f"{operation} failed")


class ProtocolError(StoreError):
    """The daemon sent something this client cannot interpret."""


class ProtocolMismatchError(ProtocolError):
    """The peer did not answer the handshake with the expected magic number."""

    def __init__(self, received: int):
        self.received = received
        super().__init__(f"Protocol mismatch: unexpected handshake reply {received:#x}")


class UnsupportedVersionError(ProtocolError):
    """The daemon speaks a protocol version other than the pinned one."""

    def __init__(self, version: int):
        self.version = version
        major, minor = version >> 8, version & 0xFF
        super().__init__(
            f"Unsupported daemon protocol version {major}.{minor} ({version:#x})"
        )


class UnsupportedFieldTypeError(ProtocolError):
    """An activity field carried a type tag other than int or string."""

    def __init__(self, field_type: int):
        self.field_type = field_type
        super().__init__(f"Unsupported field type {field_type}")


class UnknownFrameError(ProtocolError):
    """The stderr channel carried a frame tag this client does not know."""

    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Unknown stderr frame {tag:#x}; stream cannot be resynchronized")


class UnsupportedFrameError(ProtocolError):
    """A known stderr frame that needs a capability this client lacks."""

    def __init__(self, tag: int, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"Unsupported stderr frame {tag:#x}: {reason}")


class DecodeError(StoreError):
    """A string read from the wire was not valid UTF-8."""


class RemoteError(StoreError):
    """The daemon reported a failure through an ERROR frame."""

    def __init__(self, message: str, level: int = 0, traces: Optional[List[str]] = None):
        self.message = message
        self.level = level
        self.traces = traces or []
        super().__init__(message)


class ConnectionBrokenError(StoreError):
    """The connection failed earlier and can no longer be used."""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Connection is no longer usable{detail}")


__all__ = [
    "StoreError",
    "TransportError",
    "ProtocolError",
    "ProtocolMismatchError",
    "UnsupportedVersionError",
    "UnsupportedFieldTypeError",
    "UnknownFrameError",
    "UnsupportedFrameError",
    "DecodeError",
    "RemoteError",
    "ConnectionBrokenError",
]
