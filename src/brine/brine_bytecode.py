"""Opcode definitions for the pickle instruction stream."""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Tuple

from brine.brine_argument import (
    BrineArgument, ByteArray8Argument, Bytes1Argument, Bytes4Argument, Bytes8Argument,
    DecimalNLLongArgument, DecimalNLShortArgument, Float8Argument, FloatNLArgument,
    Int4Argument, Long1Argument, Long4Argument, String1Argument, String4Argument,
    StringNLArgument, StringNLPairArgument, UInt1Argument, UInt2Argument, UInt4Argument,
    UInt8Argument, UnicodeString1Argument, UnicodeString4Argument, UnicodeString8Argument,
    UnicodeStringNLArgument,
)


class Opcode(IntEnum):
    """Pickle opcodes, protocols 0 to 5.  Each value is the opcode's byte."""

    # Integers
    INT = 0x49                  # I: decimal integer line
    BININT = 0x4A               # J: 4-byte signed
    BININT1 = 0x4B              # K: 1-byte unsigned
    BININT2 = 0x4D              # M: 2-byte unsigned
    LONG = 0x4C                 # L: decimal long line
    LONG1 = 0x8A                # two's complement, 1-byte length
    LONG4 = 0x8B                # two's complement, 4-byte length

    # Strings and buffers
    STRING = 0x53               # S: quoted string line
    BINSTRING = 0x54            # T: 4-byte length
    SHORT_BINSTRING = 0x55      # U: 1-byte length
    BINBYTES = 0x42             # B: 4-byte length
    SHORT_BINBYTES = 0x43       # C: 1-byte length
    BINBYTES8 = 0x8E            # 8-byte length
    BYTEARRAY8 = 0x96           # 8-byte length
    NEXT_BUFFER = 0x97          # out-of-band buffer
    READONLY_BUFFER = 0x98      # make top buffer read-only

    # Constants
    NONE = 0x4E                 # N
    NEWTRUE = 0x88
    NEWFALSE = 0x89

    # Unicode
    UNICODE = 0x56              # V: text line
    SHORT_BINUNICODE = 0x8C     # 1-byte length
    BINUNICODE = 0x58           # X: 4-byte length
    BINUNICODE8 = 0x8D          # 8-byte length

    # Floats
    FLOAT = 0x46                # F: float line
    BINFLOAT = 0x47             # G: 8-byte big-endian double

    # Lists
    EMPTY_LIST = 0x5D           # ]
    APPEND = 0x61               # a
    APPENDS = 0x65              # e
    LIST = 0x6C                 # l

    # Tuples
    EMPTY_TUPLE = 0x29          # )
    TUPLE = 0x74                # t
    TUPLE1 = 0x85
    TUPLE2 = 0x86
    TUPLE3 = 0x87

    # Dicts
    EMPTY_DICT = 0x7D           # }
    DICT = 0x64                 # d
    SETITEM = 0x73              # s
    SETITEMS = 0x75             # u

    # Sets
    EMPTY_SET = 0x8F
    ADDITEMS = 0x90
    FROZENSET = 0x91

    # Stack manipulation
    POP = 0x30                  # 0
    DUP = 0x32                  # 2
    MARK = 0x28                 # (
    POP_MARK = 0x31             # 1

    # Memo
    GET = 0x67                  # g: decimal key line
    BINGET = 0x68               # h: 1-byte key
    LONG_BINGET = 0x6A          # j: 4-byte key
    PUT = 0x70                  # p: decimal key line
    BINPUT = 0x71               # q: 1-byte key
    LONG_BINPUT = 0x72          # r: 4-byte key
    MEMOIZE = 0x94              # key = memo size

    # Extension registry
    EXT1 = 0x82
    EXT2 = 0x83
    EXT4 = 0x84

    # Object construction
    GLOBAL = 0x63               # c: module line, name line
    STACK_GLOBAL = 0x93
    REDUCE = 0x52               # R
    BUILD = 0x62                # b
    INST = 0x69                 # i: module line, name line
    OBJ = 0x6F                  # o
    NEWOBJ = 0x81
    NEWOBJ_EX = 0x92

    # Framing
    PROTO = 0x80
    STOP = 0x2E                 # .
    FRAME = 0x95

    # Persistent ids
    PERSID = 0x50               # P: id line
    BINPERSID = 0x51            # Q


# Shared readers - all readers are stateless.
_UINT1 = UInt1Argument()
_UINT2 = UInt2Argument()
_UINT4 = UInt4Argument()
_UINT8 = UInt8Argument()
_INT4 = Int4Argument()
_DECIMALNL_SHORT = DecimalNLShortArgument()
_STRINGNL_NOESCAPE = StringNLArgument(strip=False)
_STRINGNL_PAIR = StringNLPairArgument(strip=False)


# Maps every supported opcode to the reader for its in-stream argument (None
# when the opcode has no argument).
OPCODE_ARGUMENTS: Dict[Opcode, BrineArgument | None] = {
    Opcode.INT: _DECIMALNL_SHORT,
    Opcode.BININT: _INT4,
    Opcode.BININT1: _UINT1,
    Opcode.BININT2: _UINT2,
    Opcode.LONG: DecimalNLLongArgument(),
    Opcode.LONG1: Long1Argument(),
    Opcode.LONG4: Long4Argument(),
    Opcode.STRING: StringNLArgument(strip=True),
    Opcode.BINSTRING: String4Argument(),
    Opcode.SHORT_BINSTRING: String1Argument(),
    Opcode.BINBYTES: Bytes4Argument(),
    Opcode.SHORT_BINBYTES: Bytes1Argument(),
    Opcode.BINBYTES8: Bytes8Argument(),
    Opcode.BYTEARRAY8: ByteArray8Argument(),
    Opcode.NEXT_BUFFER: None,
    Opcode.READONLY_BUFFER: None,
    Opcode.NONE: None,
    Opcode.NEWTRUE: None,
    Opcode.NEWFALSE: None,
    Opcode.UNICODE: UnicodeStringNLArgument(),
    Opcode.SHORT_BINUNICODE: UnicodeString1Argument(),
    Opcode.BINUNICODE: UnicodeString4Argument(),
    Opcode.BINUNICODE8: UnicodeString8Argument(),
    Opcode.FLOAT: FloatNLArgument(),
    Opcode.BINFLOAT: Float8Argument(),
    Opcode.EMPTY_LIST: None,
    Opcode.APPEND: None,
    Opcode.APPENDS: None,
    Opcode.LIST: None,
    Opcode.EMPTY_TUPLE: None,
    Opcode.TUPLE: None,
    Opcode.TUPLE1: None,
    Opcode.TUPLE2: None,
    Opcode.TUPLE3: None,
    Opcode.EMPTY_DICT: None,
    Opcode.DICT: None,
    Opcode.SETITEM: None,
    Opcode.SETITEMS: None,
    Opcode.EMPTY_SET: None,
    Opcode.ADDITEMS: None,
    Opcode.FROZENSET: None,
    Opcode.POP: None,
    Opcode.DUP: None,
    Opcode.MARK: None,
    Opcode.POP_MARK: None,
    Opcode.GET: _DECIMALNL_SHORT,
    Opcode.BINGET: _UINT1,
    Opcode.LONG_BINGET: _UINT4,
    Opcode.PUT: _DECIMALNL_SHORT,
    Opcode.BINPUT: _UINT1,
    Opcode.LONG_BINPUT: _UINT4,
    Opcode.MEMOIZE: None,
    Opcode.EXT1: _UINT1,
    Opcode.EXT2: _UINT2,
    Opcode.EXT4: _INT4,
    Opcode.GLOBAL: _STRINGNL_PAIR,
    Opcode.STACK_GLOBAL: None,
    Opcode.REDUCE: None,
    Opcode.BUILD: None,
    Opcode.INST: _STRINGNL_PAIR,
    Opcode.OBJ: None,
    Opcode.NEWOBJ: None,
    Opcode.NEWOBJ_EX: None,
    Opcode.PROTO: _UINT1,
    Opcode.STOP: None,
    Opcode.FRAME: _UINT8,
    Opcode.PERSID: _STRINGNL_NOESCAPE,
    Opcode.BINPERSID: None,
}


def _build_opcode_table() -> Dict[int, Tuple[Opcode, BrineArgument | None]]:
    return {int(opcode): (opcode, argument) for opcode, argument in OPCODE_ARGUMENTS.items()}


# Byte value -> (opcode, argument reader).  Bytes absent from this table end
# the instruction stream.
OPCODE_TABLE: Dict[int, Tuple[Opcode, BrineArgument | None]] = _build_opcode_table()


@dataclass(frozen=True)
class Instruction:
    """Single decoded instruction.  Created once by the disassembler, never mutated."""
    opcode: Opcode
    arg: Any = None
    pos: int = 0

    def has_argument(self) -> bool:
        """Return True if this opcode carries an in-stream argument."""
        return OPCODE_ARGUMENTS[self.opcode] is not None

    def __repr__(self) -> str:
        """Human-readable representation."""
        if not self.has_argument():
            return f"{self.pos:6d}: {self.opcode.name}"

        return f"{self.pos:6d}: {self.opcode.name} {self.arg!r}"
