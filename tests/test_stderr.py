"""
Tests for daemon/stderr.py - draining the out-of-band frame channel.
"""

import io
import unittest

from daemon_script import DaemonScript

from nixlink.daemon import protocol
from nixlink.daemon.errors import (
    RemoteError,
    TransportError,
    UnknownFrameError,
    UnsupportedFieldTypeError,
    UnsupportedFrameError,
)
from nixlink.daemon.stderr import (
    Activity,
    ActivityResult,
    ActivityType,
    ResultType,
    StderrHandler,
    drain_stderr,
)


class RecordingHandler(StderrHandler):
    """Handler that records every event it receives."""

    def __init__(self):
        super().__init__(sink=io.StringIO())
        self.events = []

    def write(self, text):
        super().write(text)
        self.events.append(("write", text))

    def start_activity(self, activity):
        super().start_activity(activity)
        self.events.append(("start", activity))

    def stop_activity(self, activity_id):
        super().stop_activity(activity_id)
        self.events.append(("stop", activity_id))

    def result(self, result):
        super().result(result)
        self.events.append(("result", result))


class TestDrainStderr(unittest.TestCase):
    """Test cases for drain_stderr."""

    def test_basic_sequence_drains_completely(self):
        """Test WRITE, START, STOP, RESULT, LAST are consumed and "x" forwarded."""
        script = (
            DaemonScript()
            .write_frame("x")
            .start_activity(1, 0, 0, "d", [], 0)
            .stop_activity(1)
            .result(1, 0, [])
            .last()
        )
        stream, _ = script.connect()
        handler = RecordingHandler()

        frames = drain_stderr(stream, handler)

        self.assertEqual(frames, 4)
        self.assertEqual(handler.sink.getvalue(), "x")
        self.assertEqual(
            handler.events,
            [
                ("write", "x"),
                ("start", Activity(1, 0, 0, "d", [], 0)),
                ("stop", 1),
                ("result", ActivityResult(1, 0, [])),
            ],
        )
        with self.assertRaises(TransportError):
            stream.read_exact(1)

    def test_stops_exactly_at_last(self):
        """Test that bytes after LAST are left for the caller."""
        stream, _ = DaemonScript().last().u64(1).connect()
        self.assertEqual(drain_stderr(stream, RecordingHandler()), 0)
        self.assertEqual(protocol.read_u64(stream), 1)

    def test_activity_payload_decoded(self):
        """Test that fields and parent ids of nested activities are preserved."""
        script = (
            DaemonScript()
            .start_activity(7, 3, ActivityType.BUILDS, "building", [], 0)
            .start_activity(8, 3, ActivityType.BUILD, "building hello", ["/nix/store/x.drv", "", 1, 1], 7)
            .result(8, ResultType.BUILD_LOG_LINE, ["make: done"])
            .last()
        )
        stream, _ = script.connect()
        handler = RecordingHandler()
        drain_stderr(stream, handler)

        child = handler.activities[8]
        self.assertEqual(child.parent, 7)
        self.assertEqual(child.fields, ["/nix/store/x.drv", "", 1, 1])
        self.assertEqual(child.type_name, "build")
        result = handler.events[-1][1]
        self.assertEqual(result.type_name, "build_log_line")
        self.assertEqual(result.fields, ["make: done"])

    def test_stop_removes_running_activity(self):
        """Test that the handler tracks only running activities."""
        script = DaemonScript().start_activity(1, 0, 0, "a").start_activity(2, 0, 0, "b")
        stream, _ = script.stop_activity(1).last().connect()
        handler = RecordingHandler()
        drain_stderr(stream, handler)
        self.assertEqual(list(handler.activities), [2])

    def test_unknown_type_names_fall_back_to_number(self):
        """Test enum lookups for values the client does not know."""
        self.assertEqual(Activity(1, 0, 999, "").type_name, "999")
        self.assertEqual(ActivityResult(1, 998).type_name, "998")

    def test_next_frame_forwarded(self):
        """Test that legacy NEXT log lines reach the sink like WRITE."""
        stream, _ = DaemonScript().next_frame("warning: old\n").last().connect()
        handler = RecordingHandler()
        drain_stderr(stream, handler)
        self.assertEqual(handler.sink.getvalue(), "warning: old\n")

    def test_unknown_tag_is_fatal(self):
        """Test that an unrecognized tag aborts instead of skipping."""
        stream, _ = DaemonScript().write_frame("before").u64(0xDEADBEEF).last().connect()
        handler = RecordingHandler()
        with self.assertRaises(UnknownFrameError) as ctx:
            drain_stderr(stream, handler)
        self.assertEqual(ctx.exception.tag, 0xDEADBEEF)
        self.assertEqual(handler.events, [("write", "before")])

    def test_unknown_field_type_inside_activity(self):
        """Test that a bad field tag inside START_ACTIVITY propagates."""
        script = (
            DaemonScript()
            .u64(protocol.STDERR_START_ACTIVITY)
            .u64(1).u64(0).u64(0).string("d")
            .u64(1).u64(9).u64(0)
        )
        stream, _ = script.connect()
        with self.assertRaises(UnsupportedFieldTypeError):
            drain_stderr(stream, RecordingHandler())

    def test_error_frame_raises_remote_error(self):
        """Test that an ERROR frame is fully read and raised."""
        script = DaemonScript().error("path is not valid", level=0, traces=["while querying"])
        stream, _ = script.u64(123).connect()
        with self.assertRaises(RemoteError) as ctx:
            drain_stderr(stream, RecordingHandler())

        self.assertEqual(ctx.exception.message, "path is not valid")
        self.assertEqual(ctx.exception.traces, ["while querying"])
        self.assertEqual(protocol.read_u64(stream), 123)

    def test_read_frame_unsupported(self):
        """Test that a daemon request for client data is refused."""
        stream, _ = DaemonScript().u64(protocol.STDERR_READ).u64(16).connect()
        with self.assertRaises(UnsupportedFrameError) as ctx:
            drain_stderr(stream, RecordingHandler())
        self.assertEqual(ctx.exception.tag, protocol.STDERR_READ)

    def test_default_handler_writes_to_sink(self):
        """Test the default StderrHandler forwards text verbatim."""
        sink = io.StringIO()
        stream, _ = DaemonScript().write_frame("a\n").write_frame("b").last().connect()
        drain_stderr(stream, StderrHandler(sink))
        self.assertEqual(sink.getvalue(), "a\nb")


if __name__ == "__main__":
    unittest.main()
