"""Argument readers for pickle opcodes.

Each reader consumes one argument encoding from a binary stream positioned
just after the opcode byte.  Readers are stateless so a single instance is
shared by every opcode that uses the same encoding.

Readers raise BrineEndOfFileError when the stream runs out and
BrineInvalidValueError when the bytes cannot be parsed.  After a failure the
stream position is undefined and the caller must stop reading.
"""

from abc import ABC, abstractmethod
import re
import struct
from typing import Any, BinaryIO, Tuple

from brine.brine_error import BrineEndOfFileError, BrineInvalidValueError


# Width markers for variable-length encodings, as used by the pickle protocol tables
UP_TO_NEWLINE = -1
TAKEN_FROM_ARGUMENT1 = -2
TAKEN_FROM_ARGUMENT4 = -3
TAKEN_FROM_ARGUMENT8 = -4

INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

# Largest single read issued for a counted payload
READ_CHUNK_SIZE = 64 * 1024

_DECIMAL_PATTERN = re.compile(r"[+-]?[0-9]+")
_FLOAT_PATTERN = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE
)


def read_exact(stream: BinaryIO, count: int) -> bytes:
    """
    Read exactly `count` bytes.

    Raises:
        BrineEndOfFileError: If fewer bytes are available
    """
    if count == 0:
        return b""

    # Counts are untrusted; memory grows only with the bytes actually read.
    chunks = []
    received = 0
    while received < count:
        chunk = stream.read(min(count - received, READ_CHUNK_SIZE))
        if not chunk:
            raise BrineEndOfFileError(needed=count, available=received)

        chunks.append(chunk)
        received += len(chunk)

    return b"".join(chunks)


def read_line(stream: BinaryIO) -> bytes:
    """
    Read up to the next newline, excluding it.

    A final line without a newline is accepted.

    Raises:
        BrineEndOfFileError: If the stream is already exhausted
    """
    line = stream.readline()
    if not line:
        raise BrineEndOfFileError()

    if line.endswith(b"\n"):
        return line[:-1]

    return line


def decode_utf8(data: bytes, what: str) -> str:
    """Decode UTF-8 text, raising BrineInvalidValueError on bad encodings."""
    try:
        return data.decode("utf-8")

    except UnicodeDecodeError as e:
        raise BrineInvalidValueError(
            message=f"Invalid UTF-8 in {what}",
            received=repr(data[:32]),
            context=str(e)
        ) from e


class BrineArgument(ABC):
    """Abstract argument reader."""

    name: str = ""
    n: int = 0

    @abstractmethod
    def read(self, stream: BinaryIO) -> Any:
        """Read one argument from the stream."""

    def __repr__(self) -> str:
        return f"<argument {self.name}>"


class _StructArgument(BrineArgument):
    """Fixed-width argument decoded with a struct format."""

    fmt: str = ""

    def __init__(self) -> None:
        self._struct = struct.Struct(self.fmt)

    def read(self, stream: BinaryIO) -> Any:
        data = read_exact(stream, self._struct.size)
        return self._struct.unpack(data)[0]


class UInt1Argument(_StructArgument):
    """One-byte unsigned integer."""
    name = "uint1"
    n = 1
    fmt = "<B"


class UInt2Argument(_StructArgument):
    """Two-byte little-endian unsigned integer."""
    name = "uint2"
    n = 2
    fmt = "<H"


class UInt4Argument(_StructArgument):
    """Four-byte little-endian unsigned integer."""
    name = "uint4"
    n = 4
    fmt = "<I"


class UInt8Argument(_StructArgument):
    """Eight-byte little-endian unsigned integer."""
    name = "uint8"
    n = 8
    fmt = "<Q"


class Int4Argument(_StructArgument):
    """Four-byte little-endian signed integer."""
    name = "int4"
    n = 4
    fmt = "<i"


class Float8Argument(_StructArgument):
    """Eight-byte IEEE 754 double.  The protocol stores BINFLOAT big-endian."""
    name = "float8"
    n = 8
    fmt = ">d"


class _CountedArgument(BrineArgument):
    """A length prefix followed by that many raw bytes."""

    prefix_fmt: str = ""

    def __init__(self) -> None:
        self._prefix = struct.Struct(self.prefix_fmt)

    def read_raw(self, stream: BinaryIO) -> bytes:
        """Read the length prefix and the payload."""
        length = self._prefix.unpack(read_exact(stream, self._prefix.size))[0]
        return read_exact(stream, length)

    def read(self, stream: BinaryIO) -> Any:
        return self.read_raw(stream)


class Bytes1Argument(_CountedArgument):
    """Byte buffer with a one-byte length."""
    name = "bytes1"
    n = TAKEN_FROM_ARGUMENT1
    prefix_fmt = "<B"


class Bytes4Argument(_CountedArgument):
    """Byte buffer with a four-byte length."""
    name = "bytes4"
    n = TAKEN_FROM_ARGUMENT4
    prefix_fmt = "<I"


class Bytes8Argument(_CountedArgument):
    """Byte buffer with an eight-byte length."""
    name = "bytes8"
    n = TAKEN_FROM_ARGUMENT8
    prefix_fmt = "<Q"


class ByteArray8Argument(Bytes8Argument):
    """Mutable byte array payload; decoded as a plain buffer."""
    name = "bytearray8"


class Long1Argument(Bytes1Argument):
    """Two's complement big integer bytes with a one-byte length."""
    name = "long1"


class Long4Argument(_CountedArgument):
    """Two's complement big integer bytes with a four-byte length."""
    name = "long4"
    n = TAKEN_FROM_ARGUMENT4
    prefix_fmt = "<I"


class _CountedTextArgument(_CountedArgument):
    """Counted UTF-8 text."""

    def read(self, stream: BinaryIO) -> str:
        return decode_utf8(self.read_raw(stream), self.name)


class String1Argument(_CountedTextArgument):
    """Legacy string with a one-byte length."""
    name = "string1"
    n = TAKEN_FROM_ARGUMENT1
    prefix_fmt = "<B"


class String4Argument(_CountedTextArgument):
    """Legacy string with a four-byte length."""
    name = "string4"
    n = TAKEN_FROM_ARGUMENT4
    prefix_fmt = "<I"


class UnicodeString1Argument(_CountedTextArgument):
    """UTF-8 string with a one-byte length."""
    name = "unicodestring1"
    n = TAKEN_FROM_ARGUMENT1
    prefix_fmt = "<B"


class UnicodeString4Argument(_CountedTextArgument):
    """UTF-8 string with a four-byte length."""
    name = "unicodestring4"
    n = TAKEN_FROM_ARGUMENT4
    prefix_fmt = "<I"


class UnicodeString8Argument(_CountedTextArgument):
    """UTF-8 string with an eight-byte length."""
    name = "unicodestring8"
    n = TAKEN_FROM_ARGUMENT8
    prefix_fmt = "<Q"


def strip_quotes(text: str) -> str:
    """
    Remove one matching pair of surrounding quotes.

    Raises:
        BrineInvalidValueError: If an opening quote has no matching closing quote
    """
    for quote in ('"', "'"):
        if not text.startswith(quote):
            continue

        if len(text) >= 2 and not text.endswith(quote):
            raise BrineInvalidValueError(
                message="Unterminated quoted string",
                received=text[:64],
                expected=f"text wrapped in {quote}...{quote}"
            )

        return text[1:-1]

    return text


class StringNLArgument(BrineArgument):
    """Newline-terminated text, optionally wrapped in quotes."""

    n = UP_TO_NEWLINE

    def __init__(self, strip: bool = True) -> None:
        self.strip = strip
        self.name = "stringnl" if strip else "stringnl_noescape"

    def read(self, stream: BinaryIO) -> str:
        text = decode_utf8(read_line(stream), self.name)
        if not self.strip:
            return text

        return strip_quotes(text)


class UnicodeStringNLArgument(StringNLArgument):
    """Newline-terminated UTF-8 text."""

    def __init__(self, strip: bool = True) -> None:
        super().__init__(strip)
        self.name = "unicodestringnl"


class StringNLPairArgument(BrineArgument):
    """Two consecutive newline-terminated strings, e.g. a module and a name."""

    name = "stringnl_noescape_pair"
    n = UP_TO_NEWLINE

    def __init__(self, strip: bool = False) -> None:
        self._line = StringNLArgument(strip)

    def read(self, stream: BinaryIO) -> Tuple[str, str]:
        first = self._line.read(stream)
        second = self._line.read(stream)
        return (first, second)


def _parse_int64(text: str, what: str) -> int:
    malformed = BrineInvalidValueError(
        message=f"Malformed decimal literal in {what}",
        received=text[:64],
        expected="decimal integer"
    )
    if _DECIMAL_PATTERN.fullmatch(text) is None:
        raise malformed

    try:
        value = int(text)

    except ValueError as e:
        # Digit strings beyond the interpreter's conversion limit
        raise malformed from e

    if not INT64_MIN <= value <= INT64_MAX:
        raise BrineInvalidValueError(
            message=f"Decimal literal out of 64-bit range in {what}",
            received=text[:64]
        )

    return value


class DecimalNLShortArgument(BrineArgument):
    """Newline-terminated decimal integer."""

    name = "decimalnl_short"
    n = UP_TO_NEWLINE

    def __init__(self) -> None:
        self._line = StringNLArgument(strip=False)

    def read(self, stream: BinaryIO) -> int:
        return _parse_int64(self._line.read(stream), self.name)


class DecimalNLLongArgument(BrineArgument):
    """Newline-terminated decimal integer with an optional trailing 'L'."""

    name = "decimalnl_long"
    n = UP_TO_NEWLINE

    def __init__(self) -> None:
        self._line = StringNLArgument(strip=False)

    def read(self, stream: BinaryIO) -> int:
        text = self._line.read(stream)
        if text.endswith("L"):
            text = text[:-1]

        return _parse_int64(text, self.name)


class FloatNLArgument(BrineArgument):
    """Newline-terminated float literal."""

    name = "floatnl"
    n = UP_TO_NEWLINE

    def __init__(self) -> None:
        self._line = StringNLArgument(strip=False)

    def read(self, stream: BinaryIO) -> float:
        text = self._line.read(stream)
        if _FLOAT_PATTERN.fullmatch(text) is None:
            raise BrineInvalidValueError(
                message="Malformed float literal",
                received=text[:64],
                expected="floating-point literal"
            )

        return float(text)
