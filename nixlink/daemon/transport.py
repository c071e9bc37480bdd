"""Duplex byte streams the daemon protocol runs over.

The codec, handshake and RPC code only ever see a `DuplexStream`. Two
implementations exist:

- SocketStream: a connected Unix socket (native duplex).
- PipeStream: two independent half-duplex binary streams joined into one,
  e.g. a spawned daemon's stdout (read side) and stdin (write side).
  ProcessStream is a PipeStream that also owns the child process.

There are no timeouts: reads block until the peer sends data or closes.
"""

import logging
import os
import socket
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from nixlink.daemon.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_SOCKET_PATH = Path("/nix/var/nix/daemon-socket/socket")
SOCKET_PATH_ENV = "NIX_DAEMON_SOCKET_PATH"
DEFAULT_DAEMON_PROGRAM = "nix-daemon"
# Upper bound for one recv()/read() call; requested sizes come from the wire.
READ_CHUNK_SIZE = 65536


def get_socket_path() -> Path:
    """Get the daemon socket path ($NIX_DAEMON_SOCKET_PATH or the default)."""
    value = os.environ.get(SOCKET_PATH_ENV, "").strip()
    return Path(value) if value else DEFAULT_SOCKET_PATH


class DuplexStream(ABC):
    """Read + write capability over one logical byte stream."""

    @abstractmethod
    def read_exact(self, size: int) -> bytes:
        """
        Read exactly `size` bytes.

        Raises:
            TransportError: On I/O failure or if the peer closes early
        """

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Queue `data` for sending. Nothing is guaranteed sent until flush()."""

    @abstractmethod
    def flush(self) -> None:
        """Push all queued bytes to the peer."""

    @abstractmethod
    def close(self) -> None:
        """Release the underlying resources."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SocketStream(DuplexStream):
    """Native duplex stream over a connected socket."""

    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._out = bytearray()

    @classmethod
    def connect(cls, path: Optional[Union[str, Path]] = None) -> "SocketStream":
        """
        Connect to a Unix domain socket.

        Args:
            path: Socket path (defaults to get_socket_path())

        Raises:
            TransportError: If the socket cannot be reached
        """
        path = Path(path) if path is not None else get_socket_path()
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(str(path))
        except OSError as e:
            sock.close()
            raise TransportError("connect", f"{path}: {e}") from e
        logger.debug("Connected to daemon socket %s", path)
        return cls(sock)

    def read_exact(self, size: int) -> bytes:
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = self.sock.recv(min(size - len(buf), READ_CHUNK_SIZE))
            except OSError as e:
                raise TransportError("read", str(e)) from e
            if not chunk:
                raise TransportError(
                    "read", f"unexpected end of stream after {len(buf)} of {size} bytes"
                )
            buf.extend(chunk)
        return bytes(buf)

    def write(self, data: bytes) -> None:
        self._out.extend(data)

    def flush(self) -> None:
        if not self._out:
            return
        try:
            self.sock.sendall(self._out)
        except OSError as e:
            raise TransportError("flush", str(e)) from e
        self._out.clear()

    def close(self) -> None:
        self._out.clear()
        self.sock.close()


class PipeStream(DuplexStream):
    """Adapter joining a readable and a writable binary stream into one duplex."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO):
        self.reader = reader
        self.writer = writer

    def read_exact(self, size: int) -> bytes:
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = self.reader.read(min(size - len(buf), READ_CHUNK_SIZE))
            except (OSError, ValueError) as e:
                raise TransportError("read", str(e)) from e
            if not chunk:
                raise TransportError(
                    "read", f"unexpected end of stream after {len(buf)} of {size} bytes"
                )
            buf.extend(chunk)
        return bytes(buf)

    def write(self, data: bytes) -> None:
        try:
            self.writer.write(data)
        except (OSError, ValueError) as e:
            raise TransportError("write", str(e)) from e

    def flush(self) -> None:
        try:
            self.writer.flush()
        except (OSError, ValueError) as e:
            raise TransportError("flush", str(e)) from e

    def close(self) -> None:
        for stream in (self.writer, self.reader):
            try:
                stream.close()
            except OSError as e:
                logger.debug("Ignoring error while closing pipe: %s", e)


class ProcessStream(PipeStream):
    """PipeStream over the stdout/stdin of a spawned daemon process."""

    def __init__(self, process: subprocess.Popen):
        super().__init__(process.stdout, process.stdin)
        self.process = process

    @classmethod
    def spawn(cls, args: List[str]) -> "ProcessStream":
        """
        Start a daemon speaking the protocol on its standard streams.

        Args:
            args: Full command line, e.g. ["nix-daemon", "--store", uri, "--stdio"]

        Raises:
            TransportError: If the process cannot be started
        """
        try:
            process = subprocess.Popen(
                args,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
            )
        except OSError as e:
            raise TransportError("spawn", f"{args[0]}: {e}") from e
        logger.debug("Spawned daemon pid=%s: %s", process.pid, " ".join(args))
        return cls(process)

    def close(self) -> None:
        # Closing stdin tells the daemon the session is over
        super().close()
        try:
            returncode = self.process.wait()
        except OSError as e:
            raise TransportError("close", str(e)) from e
        logger.debug("Daemon pid=%s exited with %s", self.process.pid, returncode)


def daemon_command(store_uri: str, program: str = DEFAULT_DAEMON_PROGRAM) -> List[str]:
    """Build the command line for a daemon serving `store_uri` over stdio."""
    return [program, "--store", store_uri, "--stdio"]
