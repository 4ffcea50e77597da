"""Brine - safe disassembly and interpretation of pickle streams."""

# Main API
from brine.brine import Brine

# Exceptions
from brine.brine_error import (
    BrineError, BrineDecodeError, BrineEndOfFileError, BrineInvalidValueError,
    BrineExecutionError, BrineExceedStackDepthLimitError, BrineExceedMemoryLimitError,
    BrineUnsupportedOpcodeError, BrineUnexpectedArgumentError, BrineUnexpectedStackValueError,
    BrineConfigError
)

# Value types
from brine.brine_value import (
    BrineValue, BrineNone, BrineMark, BrineBoolean, BrineInteger, BrineFloat, BrineString,
    BrineBytes, BrineList, BrineDict, BrineGlobal, BrineOpaque, BRINE_NONE, BRINE_MARK
)

# Lower-level components (for advanced usage)
from brine.brine_bytecode import Opcode, Instruction, OPCODE_TABLE
from brine.brine_disassembler import BrineDisassembler, format_listing
from brine.brine_call_registry import BrineCallRegistry
from brine.brine_config import BrineConfig
from brine.brine_vm import BrineVM, BrineTraceWatcher
from brine.brine_trace import BrineStdoutTraceWatcher, BrineBufferingTraceWatcher


__all__ = [
    # Main API
    "Brine",

    # Exceptions
    "BrineError", "BrineDecodeError", "BrineEndOfFileError", "BrineInvalidValueError",
    "BrineExecutionError", "BrineExceedStackDepthLimitError", "BrineExceedMemoryLimitError",
    "BrineUnsupportedOpcodeError", "BrineUnexpectedArgumentError", "BrineUnexpectedStackValueError",
    "BrineConfigError",

    # Value types
    "BrineValue", "BrineNone", "BrineMark", "BrineBoolean", "BrineInteger", "BrineFloat", "BrineString",
    "BrineBytes", "BrineList", "BrineDict", "BrineGlobal", "BrineOpaque", "BRINE_NONE", "BRINE_MARK",

    # Lower-level components
    "Opcode", "Instruction", "OPCODE_TABLE", "BrineDisassembler", "format_listing",
    "BrineCallRegistry", "BrineConfig", "BrineVM", "BrineTraceWatcher",

    # Trace watchers
    "BrineStdoutTraceWatcher", "BrineBufferingTraceWatcher",
]
