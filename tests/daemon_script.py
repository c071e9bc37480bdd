"""
Scripted daemon replies for tests.

DaemonScript builds the exact bytes a daemon would send, using the codec's
own writers; connect() wraps them in an in-memory PipeStream so the client
can be exercised without a real Nix installation.
"""

import io
from typing import Iterable, List, Tuple

from nixlink.daemon import protocol
from nixlink.daemon.transport import PipeStream

NIX_VERSION = "2.18.1"


class RecordingBuffer(io.BytesIO):
    """BytesIO that keeps its contents readable after close()."""

    was_closed = False

    def close(self):
        self.was_closed = True


class DaemonScript:
    """Fluent builder for the byte stream a daemon sends."""

    def __init__(self):
        self._buffer = io.BytesIO()
        self._stream = PipeStream(io.BytesIO(), self._buffer)

    def u64(self, value: int) -> "DaemonScript":
        protocol.write_u64(self._stream, value)
        return self

    def string(self, value: str) -> "DaemonScript":
        protocol.write_string(self._stream, value)
        return self

    def strings(self, values: Iterable[str]) -> "DaemonScript":
        protocol.write_strings(self._stream, values)
        return self

    def fields(self, values: Iterable) -> "DaemonScript":
        protocol.write_fields(self._stream, values)
        return self

    def raw(self, data: bytes) -> "DaemonScript":
        self._buffer.write(data)
        return self

    # Stderr frames

    def write_frame(self, text: str) -> "DaemonScript":
        return self.u64(protocol.STDERR_WRITE).string(text)

    def next_frame(self, text: str) -> "DaemonScript":
        return self.u64(protocol.STDERR_NEXT).string(text)

    def start_activity(
        self, activity_id: int, level: int, activity_type: int, description: str,
        fields: List = (), parent: int = 0,
    ) -> "DaemonScript":
        self.u64(protocol.STDERR_START_ACTIVITY)
        self.u64(activity_id).u64(level).u64(activity_type).string(description)
        return self.fields(fields).u64(parent)

    def stop_activity(self, activity_id: int) -> "DaemonScript":
        return self.u64(protocol.STDERR_STOP_ACTIVITY).u64(activity_id)

    def result(self, activity_id: int, result_type: int, fields: List = ()) -> "DaemonScript":
        return self.u64(protocol.STDERR_RESULT).u64(activity_id).u64(result_type).fields(fields)

    def error(self, message: str, level: int = 0, traces: List[str] = ()) -> "DaemonScript":
        self.u64(protocol.STDERR_ERROR).string("Error").u64(level).string("Error")
        self.string(message).u64(0).u64(len(traces))
        for trace in traces:
            self.u64(0).string(trace)
        return self

    def last(self) -> "DaemonScript":
        return self.u64(protocol.STDERR_LAST)

    def handshake(
        self,
        nix_version: str = NIX_VERSION,
        magic: int = protocol.WORKER_MAGIC_2,
        version: int = protocol.PROTOCOL_VERSION,
    ) -> "DaemonScript":
        return self.u64(magic).u64(version).string(nix_version).last()

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()

    def connect(self) -> Tuple[PipeStream, RecordingBuffer]:
        """Return (stream replaying this script, buffer recording what the client sent)."""
        sent = RecordingBuffer()
        return PipeStream(RecordingBuffer(self.getvalue()), sent), sent


def client_handshake_bytes() -> bytes:
    """Bytes a client sends during a successful handshake."""
    return b"".join(
        protocol.encode_u64(v)
        for v in (protocol.WORKER_MAGIC_1, protocol.PROTOCOL_VERSION, 0, 0)
    )
