"""Brine disassembler - turns a pickle byte stream into a list of instructions."""

import io
import logging
from typing import BinaryIO, List

from brine.brine_bytecode import OPCODE_TABLE, Instruction, Opcode
from brine.brine_error import BrineDecodeError


class _TrackedStream:
    """Counts bytes consumed from a stream so offsets work on non-seekable sources."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.position = 0

    def read(self, count: int = -1) -> bytes:
        data = self._stream.read(count)
        if data:
            self.position += len(data)

        return data

    def readline(self) -> bytes:
        data = self._stream.readline()
        self.position += len(data)
        return data


class BrineDisassembler:
    """
    Decodes a pickle stream into instructions.

    Decoding is lenient: the stream is read until it ends, an unknown opcode
    byte is seen, or an argument fails to decode.  In every case the
    instructions decoded so far are returned and no error is raised, so a
    truncated or corrupted tail never hides a valid prefix.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger("BrineDisassembler")

    def disassemble(self, stream: BinaryIO) -> List[Instruction]:
        """
        Disassemble a binary stream.

        Args:
            stream: Readable binary stream positioned at the first opcode

        Returns:
            The ordered list of decoded instructions
        """
        instructions: List[Instruction] = []
        tracked = _TrackedStream(stream)

        while True:
            offset = tracked.position
            opcode_byte = tracked.read(1)
            if not opcode_byte:
                break

            entry = OPCODE_TABLE.get(opcode_byte[0])
            if entry is None:
                self._logger.debug("Unknown opcode byte %#04x at offset %d, stopping", opcode_byte[0], offset)
                break

            opcode, argument = entry
            arg = None
            if argument is not None:
                try:
                    arg = argument.read(tracked)  # type: ignore[arg-type]

                except BrineDecodeError as e:
                    self._logger.debug(
                        "Failed to decode %s argument (%s) at offset %d, stopping: %s",
                        opcode.name, argument.name, offset, e.message
                    )
                    break

            instructions.append(Instruction(opcode, arg, offset))

        self._logger.debug("Disassembled %d instructions", len(instructions))
        return instructions

    def disassemble_bytes(self, data: bytes) -> List[Instruction]:
        """Disassemble an in-memory buffer."""
        return self.disassemble(io.BytesIO(data))

    def disassemble_file(self, path: str) -> List[Instruction]:
        """Disassemble a file on disk."""
        with open(path, 'rb') as f:
            return self.disassemble(f)


def annotate_instruction(instruction: Instruction) -> str:
    """Return an annotation describing what an instruction does."""
    opcode = instruction.opcode
    arg = instruction.arg

    if opcode in (Opcode.GLOBAL, Opcode.INST):
        module, name = arg
        verb = "Push reference to" if opcode == Opcode.GLOBAL else "Instantiate"
        return f"  ; {verb} {module}.{name}"

    if opcode in (Opcode.PUT, Opcode.BINPUT, Opcode.LONG_BINPUT):
        return f"  ; Store top of stack in memo[{arg}]"

    if opcode in (Opcode.GET, Opcode.BINGET, Opcode.LONG_BINGET):
        return f"  ; Push memo[{arg}]"

    if opcode == Opcode.MEMOIZE:
        return "  ; Store top of stack in next memo slot"

    if opcode in (Opcode.REDUCE, Opcode.NEWOBJ, Opcode.NEWOBJ_EX, Opcode.OBJ):
        return "  ; Call through registry"

    if opcode == Opcode.BUILD:
        return "  ; Apply state to object"

    if opcode in (Opcode.PERSID, Opcode.BINPERSID):
        return "  ; Load persistent id"

    if opcode == Opcode.PROTO:
        return f"  ; Protocol {arg}"

    if opcode == Opcode.FRAME:
        return f"  ; Frame of {arg} bytes"

    if opcode == Opcode.STOP:
        return "  ; End of stream"

    return ""


def format_listing(instructions: List[Instruction]) -> str:
    """
    Format instructions as an annotated listing, one per line.

    Args:
        instructions: Instructions to format

    Returns:
        Listing text
    """
    lines = []
    for instruction in instructions:
        text = repr(instruction)
        if len(text) > 70:
            text = text[:67] + "..."

        lines.append(f"{text}{annotate_instruction(instruction)}")

    return "\n".join(lines)
