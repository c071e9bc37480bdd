"""Binary wire format for the Nix daemon worker protocol.

All integers are unsigned 64-bit little-endian. Strings are framed as:

    u64 length N | N raw UTF-8 bytes | zero padding to the next multiple of 8

so "abc" is encoded as 03 00 00 00 00 00 00 00 61 62 63 00 00 00 00 00.
A string whose length is already a multiple of 8 carries no padding at all.

Field lists (used by activity and result frames):

    u64 count | count * (u64 tag, value)   tag 0 -> u64, tag 1 -> string

The stream is never self-synchronizing: every reader here consumes exactly
the bytes its writer produced, or the connection is lost.
"""

import struct
from typing import Iterable, List, Union

from nixlink.daemon.errors import DecodeError, ProtocolError, UnsupportedFieldTypeError
from nixlink.daemon.transport import DuplexStream

# Handshake
WORKER_MAGIC_1 = 0x6E697863
WORKER_MAGIC_2 = 0x6478696F
PROTOCOL_VERSION = 0x0100 | 34

# Stderr channel frame tags
STDERR_NEXT = 0x6F6C6D67
STDERR_READ = 0x64617461
STDERR_WRITE = 0x64617416
STDERR_LAST = 0x616C7473
STDERR_ERROR = 0x63787470
STDERR_START_ACTIVITY = 0x53545254
STDERR_STOP_ACTIVITY = 0x53544F50
STDERR_RESULT = 0x52534C54

# Worker opcodes
OP_IS_VALID_PATH = 1
OP_QUERY_VALID_PATHS = 31

# Field type tags
FIELD_INT = 0
FIELD_STRING = 1

U64_MAX = 2**64 - 1

Field = Union[int, str]

_U64 = struct.Struct("<Q")
_PADDING = bytes(8)


def padding_size(length: int) -> int:
    """Number of zero bytes that follow a string of `length` bytes."""
    return (8 - length % 8) % 8


def string_wire_size(value: str) -> int:
    """Encoded size of `value`, including its length prefix and padding."""
    length = len(value.encode("utf-8"))
    return 8 + length + padding_size(length)


def protocol_version_string(version: int = PROTOCOL_VERSION) -> str:
    """Render a packed protocol version as "major.minor"."""
    return f"{version >> 8}.{version & 0xFF}"


def encode_u64(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"Value out of u64 range: {value}")
    return _U64.pack(value)


def encode_string(value: str) -> bytes:
    data = value.encode("utf-8")
    return encode_u64(len(data)) + data + _PADDING[: padding_size(len(data))]


def read_u64(stream: DuplexStream) -> int:
    return _U64.unpack(stream.read_exact(8))[0]


def write_u64(stream: DuplexStream, value: int) -> None:
    stream.write(encode_u64(value))


def read_string(stream: DuplexStream) -> str:
    """
    Read one length-prefixed, padded string.

    Raises:
        DecodeError: If the payload is not valid UTF-8
        ProtocolError: If the padding bytes are not zero
        TransportError: If the stream ends early
    """
    length = read_u64(stream)
    data = stream.read_exact(length)
    pad = padding_size(length)
    if pad and stream.read_exact(pad) != _PADDING[:pad]:
        raise ProtocolError("Non-zero padding after string")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Invalid UTF-8 in string from daemon: {e}") from e


def write_string(stream: DuplexStream, value: str) -> None:
    stream.write(encode_string(value))


def read_strings(stream: DuplexStream) -> List[str]:
    count = read_u64(stream)
    return [read_string(stream) for _ in range(count)]


def write_strings(stream: DuplexStream, values: Iterable[str]) -> None:
    values = list(values)
    write_u64(stream, len(values))
    for value in values:
        write_string(stream, value)


def read_fields(stream: DuplexStream) -> List[Field]:
    """
    Read a typed field list.

    Integer fields decode to int and string fields to str.

    Raises:
        UnsupportedFieldTypeError: On any tag other than int or string. The
            size of an unknown value is unknown, so the rest of the frame
            cannot be skipped.
    """
    count = read_u64(stream)
    fields: List[Field] = []
    for _ in range(count):
        field_type = read_u64(stream)
        if field_type == FIELD_INT:
            fields.append(read_u64(stream))
        elif field_type == FIELD_STRING:
            fields.append(read_string(stream))
        else:
            raise UnsupportedFieldTypeError(field_type)
    return fields


def write_fields(stream: DuplexStream, fields: Iterable[Field]) -> None:
    fields = list(fields)
    write_u64(stream, len(fields))
    for value in fields:
        if isinstance(value, str):
            write_u64(stream, FIELD_STRING)
            write_string(stream, value)
        elif isinstance(value, int) and not isinstance(value, bool):
            write_u64(stream, FIELD_INT)
            write_u64(stream, value)
        else:
            raise TypeError(f"Unsupported field value: {value!r}")
