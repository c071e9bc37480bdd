"""Out-of-band stderr channel of the daemon protocol.

After every request (and once during the handshake) the daemon sends a
sequence of frames ahead of the actual reply: log text, activity
start/stop events and activity results, terminated by STDERR_LAST. There
is no overall length field, so every frame must be parsed completely to
find the next one. An unknown tag is fatal.
"""

import logging
import sys
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, TextIO

from nixlink.daemon import protocol
from nixlink.daemon.errors import RemoteError, UnknownFrameError, UnsupportedFrameError
from nixlink.daemon.protocol import Field, read_fields, read_string, read_u64
from nixlink.daemon.transport import DuplexStream

logger = logging.getLogger(__name__)


class Verbosity(IntEnum):
    ERROR = 0
    WARN = 1
    NOTICE = 2
    INFO = 3
    TALKATIVE = 4
    CHATTY = 5
    DEBUG = 6
    VOMIT = 7


class ActivityType(IntEnum):
    UNKNOWN = 0
    COPY_PATH = 100
    FILE_TRANSFER = 101
    REALISE = 102
    COPY_PATHS = 103
    BUILDS = 104
    BUILD = 105
    OPTIMISE_STORE = 106
    VERIFY_PATHS = 107
    SUBSTITUTE = 108
    QUERY_PATH_INFO = 109
    POST_BUILD_HOOK = 110
    BUILD_WAITING = 111


class ResultType(IntEnum):
    FILE_LINKED = 100
    BUILD_LOG_LINE = 101
    UNTRUSTED_PATH = 102
    CORRUPTED_PATH = 103
    SET_PHASE = 104
    PROGRESS = 105
    SET_EXPECTED = 106
    POST_BUILD_LOG_LINE = 107


def _enum_name(enum_cls, value: int) -> str:
    try:
        return enum_cls(value).name.lower()
    except ValueError:
        return str(value)


@dataclass
class Activity:
    """A unit of daemon work announced by START_ACTIVITY."""

    id: int
    level: int
    type: int
    description: str
    fields: List[Field] = field(default_factory=list)
    parent: int = 0

    @property
    def type_name(self) -> str:
        return _enum_name(ActivityType, self.type)


@dataclass
class ActivityResult:
    """A structured result attached to an activity (progress, log line, ...)."""

    activity_id: int
    type: int
    fields: List[Field] = field(default_factory=list)

    @property
    def type_name(self) -> str:
        return _enum_name(ResultType, self.type)


class StderrHandler:
    """
    Receives the decoded content of the stderr channel.

    The default behaviour forwards log text verbatim to `sink` and keeps
    track of running activities; subclasses override the hooks to report
    progress differently.
    """

    def __init__(self, sink: Optional[TextIO] = None):
        """
        Args:
            sink: Text stream for daemon log output (defaults to sys.stderr
                at write time)
        """
        self.sink = sink
        self.activities: Dict[int, Activity] = {}

    def write(self, text: str) -> None:
        sink = self.sink if self.sink is not None else sys.stderr
        sink.write(text)
        sink.flush()

    def start_activity(self, activity: Activity) -> None:
        self.activities[activity.id] = activity
        logger.debug(
            "Activity %s started: type=%s level=%s parent=%s %r fields=%r",
            activity.id,
            activity.type_name,
            activity.level,
            activity.parent,
            activity.description,
            activity.fields,
        )

    def stop_activity(self, activity_id: int) -> None:
        activity = self.activities.pop(activity_id, None)
        if activity is None:
            logger.debug("Activity %s stopped (never started)", activity_id)
        else:
            logger.debug("Activity %s stopped: %r", activity_id, activity.description)

    def result(self, result: ActivityResult) -> None:
        logger.debug(
            "Activity %s result %s: %r", result.activity_id, result.type_name, result.fields
        )


def _read_error(stream: DuplexStream) -> RemoteError:
    # type string is always "Error"; name is unused by clients
    read_string(stream)
    level = read_u64(stream)
    read_string(stream)
    message = read_string(stream)
    read_u64(stream)  # position, never sent
    traces = []
    for _ in range(read_u64(stream)):
        read_u64(stream)
        traces.append(read_string(stream))
    return RemoteError(message, level=level, traces=traces)


def drain_stderr(stream: DuplexStream, handler: Optional[StderrHandler] = None) -> int:
    """
    Consume stderr frames up to and including STDERR_LAST.

    Args:
        stream: Connection stream, positioned at the start of a frame
        handler: Receives log text and activity events (default: StderrHandler())

    Returns:
        Number of frames consumed before STDERR_LAST

    Raises:
        RemoteError: If the daemon reported a failure (ERROR frame)
        UnknownFrameError: On an unrecognized tag; the stream is lost
        UnsupportedFrameError: If the daemon asks the client for data
    """
    handler = handler if handler is not None else StderrHandler()
    frames = 0
    while True:
        tag = read_u64(stream)
        if tag == protocol.STDERR_LAST:
            return frames
        frames += 1

        if tag in (protocol.STDERR_WRITE, protocol.STDERR_NEXT):
            handler.write(read_string(stream))
        elif tag == protocol.STDERR_START_ACTIVITY:
            activity_id = read_u64(stream)
            level = read_u64(stream)
            activity_type = read_u64(stream)
            description = read_string(stream)
            fields = read_fields(stream)
            parent = read_u64(stream)
            handler.start_activity(
                Activity(activity_id, level, activity_type, description, fields, parent)
            )
        elif tag == protocol.STDERR_STOP_ACTIVITY:
            handler.stop_activity(read_u64(stream))
        elif tag == protocol.STDERR_RESULT:
            activity_id = read_u64(stream)
            result_type = read_u64(stream)
            handler.result(ActivityResult(activity_id, result_type, read_fields(stream)))
        elif tag == protocol.STDERR_ERROR:
            raise _read_error(stream)
        elif tag == protocol.STDERR_READ:
            raise UnsupportedFrameError(tag, "daemon requested data from the client")
        else:
            raise UnknownFrameError(tag)
