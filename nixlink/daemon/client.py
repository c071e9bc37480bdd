"""Synchronous client for the Nix daemon.

A StoreConnection owns one DuplexStream, performs the handshake when it is
opened and then serves one request at a time:

    with StoreConnection.connect_local() as conn:
        if conn.is_valid_path("/nix/store/...-hello-2.12"):
            ...

Any error leaves the stream in an unknown position, so the connection
marks itself broken and refuses further requests. Open a new connection
to retry. Connections are not thread-safe; use one per thread.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set, Union

from nixlink.daemon import protocol
from nixlink.daemon.errors import (
    ConnectionBrokenError,
    ProtocolError,
    ProtocolMismatchError,
    UnsupportedVersionError,
)
from nixlink.daemon.protocol import (
    read_string,
    read_strings,
    read_u64,
    write_string,
    write_strings,
    write_u64,
)
from nixlink.daemon.stderr import StderrHandler, drain_stderr
from nixlink.daemon.transport import (
    DEFAULT_DAEMON_PROGRAM,
    DuplexStream,
    ProcessStream,
    SocketStream,
    daemon_command,
)

logger = logging.getLogger(__name__)


class StoreConnection:
    """
    A handshaken connection to the daemon.

    Attributes:
        stream: The owned transport
        handler: Receives log text and activities from the stderr channel
        daemon_version: Protocol version reported by the daemon
        daemon_nix_version: Version string of the daemon's Nix
    """

    def __init__(self, stream: DuplexStream, handler: Optional[StderrHandler] = None):
        """
        Wrap a stream without talking to the daemon yet.

        Prefer StoreConnection.open(), which also runs the handshake.
        """
        self.stream = stream
        self.handler = handler if handler is not None else StderrHandler()
        self.daemon_version = 0
        self.daemon_nix_version = ""
        self._ready = False
        self._failure: Optional[BaseException] = None
        self._closed = False

    @classmethod
    def open(
        cls, stream: DuplexStream, handler: Optional[StderrHandler] = None
    ) -> "StoreConnection":
        """
        Perform the handshake over `stream` and return a ready connection.

        The stream is closed if the handshake fails.
        """
        conn = cls(stream, handler)
        try:
            conn._handshake()
        except BaseException:
            conn.close()
            raise
        return conn

    @classmethod
    def connect_local(
        cls,
        socket_path: Optional[Union[str, Path]] = None,
        handler: Optional[StderrHandler] = None,
    ) -> "StoreConnection":
        """Connect to the local daemon socket ($NIX_DAEMON_SOCKET_PATH or default)."""
        return cls.open(SocketStream.connect(socket_path), handler)

    @classmethod
    def connect_to_store(
        cls,
        uri: str,
        program: str = DEFAULT_DAEMON_PROGRAM,
        handler: Optional[StderrHandler] = None,
    ) -> "StoreConnection":
        """Spawn `program --store URI --stdio` and talk to it over its pipes."""
        return cls.open(ProcessStream.spawn(daemon_command(uri, program)), handler)

    @property
    def protocol_version(self) -> int:
        return protocol.PROTOCOL_VERSION

    @property
    def is_usable(self) -> bool:
        return self._ready and self._failure is None and not self._closed

    def _handshake(self) -> None:
        with self._guard(require_ready=False):
            write_u64(self.stream, protocol.WORKER_MAGIC_1)
            self.stream.flush()
            magic = read_u64(self.stream)
            if magic != protocol.WORKER_MAGIC_2:
                raise ProtocolMismatchError(magic)

            self.daemon_version = read_u64(self.stream)
            if self.daemon_version != protocol.PROTOCOL_VERSION:
                raise UnsupportedVersionError(self.daemon_version)

            write_u64(self.stream, protocol.PROTOCOL_VERSION)
            write_u64(self.stream, 0)  # obsolete CPU affinity
            write_u64(self.stream, 0)  # obsolete reserveSpace
            self.stream.flush()

            self.daemon_nix_version = read_string(self.stream)
            drain_stderr(self.stream, self.handler)

        self._ready = True
        logger.info(
            "Connected to daemon (Nix %s, protocol %s)",
            self.daemon_nix_version,
            protocol.protocol_version_string(self.daemon_version),
        )

    @contextmanager
    def _guard(self, require_ready: bool = True) -> Iterator[None]:
        """
        Run one protocol exchange; any failure poisons the connection.

        Requests are refused until the handshake has completed.
        """
        if self._failure is not None or self._closed:
            raise ConnectionBrokenError(self._failure)
        if require_ready and not self._ready:
            raise ConnectionBrokenError()
        try:
            yield
        except BaseException as e:
            self._failure = e
            logger.debug("Connection marked broken: %s", e)
            raise

    def _finish_request(self) -> None:
        self.stream.flush()
        drain_stderr(self.stream, self.handler)

    def is_valid_path(self, path: str) -> bool:
        """
        Ask whether `path` is registered in the store.

        Args:
            path: Absolute store path

        Returns:
            True if the daemon reports the path as valid
        """
        with self._guard():
            write_u64(self.stream, protocol.OP_IS_VALID_PATH)
            write_string(self.stream, path)
            self._finish_request()
            return read_u64(self.stream) != 0

    def query_valid_paths(self, paths: Iterable[str]) -> Set[str]:
        """
        Ask which of `paths` are registered in the store.

        Args:
            paths: Store paths to check (duplicates are sent once)

        Returns:
            The valid subset of `paths`

        Raises:
            ProtocolError: If the daemon names a path that was not asked for
        """
        wanted = set(paths)
        with self._guard():
            write_u64(self.stream, protocol.OP_QUERY_VALID_PATHS)
            write_strings(self.stream, sorted(wanted))
            write_u64(self.stream, 0)  # don't substitute
            self._finish_request()
            valid = set(read_strings(self.stream))
            unexpected = valid - wanted
            if unexpected:
                raise ProtocolError(
                    f"Daemon reported {len(unexpected)} path(s) that were not queried"
                )
            return valid

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.stream.close()
        logger.debug("Connection closed")

    def __enter__(self) -> "StoreConnection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
