"""Client side of the Nix daemon worker protocol.

Layers (leaf to root):
- transport: DuplexStream over a Unix socket or a spawned daemon's pipes
- protocol: u64/string/field codec and wire constants
- stderr: drains log/activity frames that precede every reply
- client: StoreConnection (handshake + RPCs)
"""

from nixlink.daemon.client import StoreConnection
from nixlink.daemon.errors import (
    ConnectionBrokenError,
    DecodeError,
    ProtocolError,
    ProtocolMismatchError,
    RemoteError,
    StoreError,
    TransportError,
    UnknownFrameError,
    UnsupportedFieldTypeError,
    UnsupportedFrameError,
    UnsupportedVersionError,
)
from nixlink.daemon.stderr import Activity, ActivityResult, StderrHandler, drain_stderr
from nixlink.daemon.transport import DuplexStream, PipeStream, ProcessStream, SocketStream

__all__ = [
    "StoreConnection",
    "StderrHandler",
    "Activity",
    "ActivityResult",
    "drain_stderr",
    "DuplexStream",
    "PipeStream",
    "ProcessStream",
    "SocketStream",
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
