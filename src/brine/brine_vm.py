"""Brine Virtual Machine - steps decoded pickle instructions against a call registry."""

import io
import logging
from typing import Any, BinaryIO, Callable, Dict, List, NoReturn, Optional, Protocol, Sequence, Tuple, Type

from brine.brine_bytecode import Instruction, Opcode
from brine.brine_call_registry import BrineBuildHandler, BrineCallHandler, BrineCallRegistry
from brine.brine_config import BrineConfig
from brine.brine_disassembler import BrineDisassembler
from brine.brine_error import (
    BrineExecutionError, BrineExceedMemoryLimitError, BrineExceedStackDepthLimitError,
    BrineUnexpectedArgumentError, BrineUnexpectedStackValueError, BrineUnsupportedOpcodeError,
)
from brine.brine_value import (
    BRINE_MARK, BRINE_NONE, BrineBoolean, BrineBytes, BrineDict, BrineFloat, BrineGlobal,
    BrineInteger, BrineList, BrineMark, BrineString, BrineValue, key_text,
)


# Reserved symbol used for persistent id lookups
PERSISTENT_LOAD_MODULE = "UNPICKLER"
PERSISTENT_LOAD_NAME = "persistent_load"

# Name used when constructing an instance of a non-symbolic class value
CONSTRUCT_NAME = "__new__"


class BrineTraceWatcher(Protocol):
    """Protocol for Brine trace watchers."""
    def on_instruction(self, instruction: Instruction, stack_depth: int) -> None:
        """
        Called after each instruction is executed.

        Args:
            instruction: The instruction just executed
            stack_depth: Stack depth after execution
        """


class BrineVM:
    """
    Stack machine for decoded pickle instructions.

    The VM never loops on its own: the caller drives it with step() and may
    stop, inspect the stack or memo, or extend the call registry between
    steps.  Symbolic calls never execute anything natively; they are routed
    to the call registry, which yields None for anything not registered.
    """

    def __init__(
        self,
        instructions: Sequence[Instruction],
        config: BrineConfig | None = None,
        registry: BrineCallRegistry | None = None
    ) -> None:
        """
        Initialize the VM.

        Args:
            instructions: Decoded instruction list
            config: Resource limits (defaults apply if omitted)
            registry: Call registry (an empty, fully inert registry if omitted)
        """
        self.config = config if config is not None else BrineConfig()
        self.config.validate()
        self.max_stack_depth = self.config.max_stack_depth
        self.max_memo_entries = self.config.max_memo_entries

        self.instructions: Tuple[Instruction, ...] = tuple(instructions)
        self.registry = registry if registry is not None else BrineCallRegistry()
        self.stack: List[BrineValue] = []
        self.memo: Dict[int, BrineValue] = {}
        self.pc = 0

        self.trace_watcher: Optional[BrineTraceWatcher] = None
        self._current: Instruction | None = None
        self._logger = logging.getLogger("BrineVM")

        # Jump table dispatch, indexed by opcode byte
        self._dispatch_table = self._build_dispatch_table()

    @classmethod
    def from_stream(
        cls,
        stream: BinaryIO,
        config: BrineConfig | None = None,
        registry: BrineCallRegistry | None = None
    ) -> 'BrineVM':
        """Disassemble a binary stream and create a VM for it."""
        instructions = BrineDisassembler().disassemble(stream)
        return cls(instructions, config, registry)

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        config: BrineConfig | None = None,
        registry: BrineCallRegistry | None = None
    ) -> 'BrineVM':
        """Disassemble an in-memory buffer and create a VM for it."""
        return cls.from_stream(io.BytesIO(data), config, registry)

    @classmethod
    def from_file(
        cls,
        path: str,
        config: BrineConfig | None = None,
        registry: BrineCallRegistry | None = None
    ) -> 'BrineVM':
        """Disassemble a file and create a VM for it."""
        with open(path, 'rb') as f:
            return cls.from_stream(f, config, registry)

    def set_trace_watcher(self, watcher: Optional[BrineTraceWatcher]) -> None:
        """
        Set the trace watcher (replaces any existing watcher).

        Args:
            watcher: BrineTraceWatcher instance or None to disable tracing
        """
        self.trace_watcher = watcher

    def register(self, module: str | None, name: str | None, handler: BrineCallHandler) -> None:
        """Register a call handler.  See BrineCallRegistry.register."""
        self.registry.register(module, name, handler)

    def register_build(self, handler: BrineBuildHandler | None) -> None:
        """Set the BUILD handler.  See BrineCallRegistry.register_build."""
        self.registry.register_build(handler)

    @property
    def root_value(self) -> BrineValue | None:
        """The bottom-most stack value, or None if the stack is empty."""
        if not self.stack:
            return None

        return self.stack[0]

    @property
    def finished(self) -> bool:
        """True once every instruction has been executed."""
        return self.pc >= len(self.instructions)

    def step(self, stop_before_terminal: bool = False) -> bool:
        """
        Execute the next instruction.

        Args:
            stop_before_terminal: If True, do not execute a STOP instruction;
                the program counter stays on it and False is returned

        Returns:
            True if an instruction was executed, False at the end of the stream

        Raises:
            BrineExecutionError: If the instruction cannot be executed
        """
        if self.pc >= len(self.instructions):
            return False

        instruction = self.instructions[self.pc]
        if stop_before_terminal and instruction.opcode == Opcode.STOP:
            return False

        self.pc += 1
        self._current = instruction

        handler = self._dispatch_table[instruction.opcode]
        if handler is None:
            self._logger.warning("Unsupported opcode %s at offset %d", instruction.opcode.name, instruction.pos)
            self._raise(BrineUnsupportedOpcodeError, f"Unsupported opcode: {instruction.opcode.name}")

        handler(instruction)

        if self.trace_watcher is not None:
            self.trace_watcher.on_instruction(instruction, len(self.stack))

        return True

    def _build_dispatch_table(self) -> List[Callable[[Instruction], None] | None]:
        """Build jump table for opcode dispatch.  Unset slots are unsupported opcodes."""
        table: List[Callable[[Instruction], None] | None] = [None] * 256

        for opcode in (Opcode.INT, Opcode.BININT, Opcode.BININT1, Opcode.BININT2):
            table[opcode] = self._op_integer

        for opcode in (
            Opcode.STRING, Opcode.BINSTRING, Opcode.SHORT_BINSTRING,
            Opcode.UNICODE, Opcode.SHORT_BINUNICODE, Opcode.BINUNICODE, Opcode.BINUNICODE8
        ):
            table[opcode] = self._op_string

        for opcode in (Opcode.BINBYTES, Opcode.SHORT_BINBYTES, Opcode.BINBYTES8, Opcode.BYTEARRAY8):
            table[opcode] = self._op_bytes

        for opcode in (Opcode.PROTO, Opcode.FRAME, Opcode.STOP, Opcode.NEXT_BUFFER, Opcode.READONLY_BUFFER):
            table[opcode] = self._op_nop

        table[Opcode.FLOAT] = self._op_float
        table[Opcode.BINFLOAT] = self._op_float
        table[Opcode.NONE] = self._op_none
        table[Opcode.NEWTRUE] = self._op_true
        table[Opcode.NEWFALSE] = self._op_false
        table[Opcode.EMPTY_LIST] = self._op_empty_list
        table[Opcode.EMPTY_TUPLE] = self._op_empty_list
        table[Opcode.EMPTY_SET] = self._op_empty_list
        table[Opcode.EMPTY_DICT] = self._op_empty_dict
        table[Opcode.MARK] = self._op_mark
        table[Opcode.POP] = self._op_pop
        table[Opcode.POP_MARK] = self._op_pop_mark
        table[Opcode.DUP] = self._op_dup
        table[Opcode.TUPLE] = self._op_tuple
        table[Opcode.LIST] = self._op_tuple
        table[Opcode.FROZENSET] = self._op_tuple
        table[Opcode.TUPLE1] = self._op_tuple1
        table[Opcode.TUPLE2] = self._op_tuple2
        table[Opcode.TUPLE3] = self._op_tuple3
        table[Opcode.APPEND] = self._op_append
        table[Opcode.APPENDS] = self._op_appends
        table[Opcode.ADDITEMS] = self._op_appends
        table[Opcode.DICT] = self._op_dict
        table[Opcode.SETITEM] = self._op_setitem
        table[Opcode.SETITEMS] = self._op_setitems
        table[Opcode.PUT] = self._op_put
        table[Opcode.BINPUT] = self._op_put
        table[Opcode.LONG_BINPUT] = self._op_put
        table[Opcode.MEMOIZE] = self._op_memoize
        table[Opcode.GET] = self._op_get
        table[Opcode.BINGET] = self._op_get
        table[Opcode.LONG_BINGET] = self._op_get
        table[Opcode.GLOBAL] = self._op_global
        table[Opcode.STACK_GLOBAL] = self._op_stack_global
        table[Opcode.REDUCE] = self._op_reduce
        table[Opcode.NEWOBJ] = self._op_newobj
        table[Opcode.NEWOBJ_EX] = self._op_newobj_ex
        table[Opcode.INST] = self._op_inst
        table[Opcode.OBJ] = self._op_obj
        table[Opcode.BUILD] = self._op_build
        table[Opcode.PERSID] = self._op_persid
        table[Opcode.BINPERSID] = self._op_binpersid

        # LONG, LONG1, LONG4 and EXT1/2/4 are deliberately left unset.
        return table

    def _raise(self, error_type: Type[BrineExecutionError], message: str, **kwargs: Any) -> NoReturn:
        """Raise an execution error located at the current instruction."""
        current = self._current
        raise error_type(
            message=message,
            position=current.pos if current is not None else None,
            opcode=current.opcode.name if current is not None else None,
            **kwargs
        )

    def _push(self, value: BrineValue) -> None:
        if len(self.stack) + 1 > self.max_stack_depth:
            self._raise(
                BrineExceedStackDepthLimitError,
                "Stack depth limit exceeded",
                context=f"Limit is {self.max_stack_depth}",
                suggestion="Raise max_stack_depth if this input is trusted"
            )

        self.stack.append(value)

    def _pop(self) -> BrineValue:
        if not self.stack:
            self._raise(BrineUnexpectedStackValueError, "Stack underflow")

        return self.stack.pop()

    def _pop_value(self) -> BrineValue:
        """Pop an operand, rejecting a mark."""
        value = self._pop()
        if isinstance(value, BrineMark):
            self._raise(BrineUnexpectedStackValueError, "Unexpected mark on stack", expected="a value")

        return value

    def _pop_typed(self, value_type: Type[BrineValue], expected: str) -> Any:
        value = self._pop()
        if not isinstance(value, value_type):
            self._raise(
                BrineUnexpectedStackValueError,
                "Unexpected value on stack",
                expected=expected,
                received=f"{value.describe()} ({value.type_name()})"
            )

        return value

    def _peek(self) -> BrineValue:
        if not self.stack:
            self._raise(BrineUnexpectedStackValueError, "Stack underflow")

        return self.stack[-1]

    def _pop_to_mark(self) -> List[BrineValue]:
        """Pop values down to the nearest mark, consuming the mark.  Returns them in push order."""
        stack = self.stack
        for i in range(len(stack) - 1, -1, -1):
            if isinstance(stack[i], BrineMark):
                values = stack[i + 1:]
                del stack[i:]
                return values

        self._raise(BrineUnexpectedStackValueError, "No mark on stack", expected="a preceding MARK")

    def _pop_n(self, count: int) -> List[BrineValue]:
        values = [self._pop_value() for _ in range(count)]
        values.reverse()
        return values

    def _put(self, key: int, value: BrineValue) -> None:
        if len(self.memo) + 1 > self.max_memo_entries:
            self._raise(
                BrineExceedMemoryLimitError,
                "Memo size limit exceeded",
                context=f"Limit is {self.max_memo_entries}",
                suggestion="Raise max_memo_entries if this input is trusted"
            )

        self.memo[key] = value

    def _int_arg(self, instruction: Instruction) -> int:
        arg = instruction.arg
        if isinstance(arg, bool) or not isinstance(arg, int):
            self._raise(BrineUnexpectedArgumentError, "Expected integer argument", received=repr(arg))

        return arg

    def _typed_arg(self, instruction: Instruction, arg_type: type) -> Any:
        arg = instruction.arg
        if not isinstance(arg, arg_type):
            self._raise(
                BrineUnexpectedArgumentError,
                f"Expected {arg_type.__name__} argument",
                received=repr(arg)
            )

        return arg

    def _pair_arg(self, instruction: Instruction) -> Tuple[str, str]:
        arg = instruction.arg
        if not (isinstance(arg, tuple) and len(arg) == 2 and all(isinstance(a, str) for a in arg)):
            self._raise(BrineUnexpectedArgumentError, "Expected (module, name) argument", received=repr(arg))

        return arg

    @staticmethod
    def _as_args(value: BrineValue) -> List[BrineValue]:
        """A list operand is an argument list; anything else is a single argument."""
        if isinstance(value, BrineList):
            return list(value.elements)

        return [value]

    def _construct(self, class_value: BrineValue, args: List[BrineValue]) -> BrineValue:
        if isinstance(class_value, BrineGlobal):
            return self.registry.call(class_value.module, class_value.name, args)

        return self.registry.call(class_value.describe(), CONSTRUCT_NAME, args)

    def _op_nop(self, _instruction: Instruction) -> None:
        """PROTO, FRAME, STOP, NEXT_BUFFER, READONLY_BUFFER: no stack effect."""

    def _op_integer(self, instruction: Instruction) -> None:
        self._push(BrineInteger(self._int_arg(instruction)))

    def _op_string(self, instruction: Instruction) -> None:
        self._push(BrineString(self._typed_arg(instruction, str)))

    def _op_bytes(self, instruction: Instruction) -> None:
        self._push(BrineBytes(self._typed_arg(instruction, bytes)))

    def _op_float(self, instruction: Instruction) -> None:
        self._push(BrineFloat(self._typed_arg(instruction, float)))

    def _op_none(self, _instruction: Instruction) -> None:
        self._push(BRINE_NONE)

    def _op_true(self, _instruction: Instruction) -> None:
        self._push(BrineBoolean(True))

    def _op_false(self, _instruction: Instruction) -> None:
        self._push(BrineBoolean(False))

    def _op_empty_list(self, _instruction: Instruction) -> None:
        """EMPTY_LIST, EMPTY_TUPLE, EMPTY_SET: push a new empty list."""
        self._push(BrineList())

    def _op_empty_dict(self, _instruction: Instruction) -> None:
        self._push(BrineDict(ordered=False))

    def _op_mark(self, _instruction: Instruction) -> None:
        self._push(BRINE_MARK)

    def _op_pop(self, _instruction: Instruction) -> None:
        self._pop()

    def _op_pop_mark(self, _instruction: Instruction) -> None:
        self._pop_to_mark()

    def _op_dup(self, _instruction: Instruction) -> None:
        self._push(self._peek())

    def _op_tuple(self, _instruction: Instruction) -> None:
        """TUPLE, LIST, FROZENSET: collect everything above the mark."""
        values = self._pop_to_mark()
        self._push(BrineList(values))

    def _op_tuple1(self, _instruction: Instruction) -> None:
        self._push(BrineList(self._pop_n(1)))

    def _op_tuple2(self, _instruction: Instruction) -> None:
        self._push(BrineList(self._pop_n(2)))

    def _op_tuple3(self, _instruction: Instruction) -> None:
        self._push(BrineList(self._pop_n(3)))

    def _op_append(self, _instruction: Instruction) -> None:
        value = self._pop_value()
        target: BrineList = self._pop_typed(BrineList, "list")
        target.append(value)
        self._push(target)

    def _op_appends(self, _instruction: Instruction) -> None:
        """APPENDS, ADDITEMS: extend the list below the mark in place."""
        values = self._pop_to_mark()
        target: BrineList = self._pop_typed(BrineList, "list")
        target.extend(values)
        self._push(target)

    def _set_pairs(self, target: BrineDict, values: List[BrineValue]) -> None:
        if len(values) % 2 != 0:
            self._raise(
                BrineUnexpectedStackValueError,
                "Odd number of values for key/value pairs",
                received=f"{len(values)} values"
            )

        for i in range(0, len(values), 2):
            target[key_text(values[i])] = values[i + 1]

    def _op_dict(self, _instruction: Instruction) -> None:
        values = self._pop_to_mark()
        target = BrineDict(ordered=False)
        self._set_pairs(target, values)
        self._push(target)

    def _op_setitem(self, _instruction: Instruction) -> None:
        value = self._pop_value()
        key = self._pop_value()
        target: BrineDict = self._pop_typed(BrineDict, "dict")
        target[key_text(key)] = value
        self._push(target)

    def _op_setitems(self, _instruction: Instruction) -> None:
        values = self._pop_to_mark()
        target: BrineDict = self._pop_typed(BrineDict, "dict")
        self._set_pairs(target, values)
        self._push(target)

    def _op_put(self, instruction: Instruction) -> None:
        """PUT, BINPUT, LONG_BINPUT: store the top of stack without popping it."""
        key = self._int_arg(instruction)
        self._put(key, self._peek())

    def _op_memoize(self, _instruction: Instruction) -> None:
        self._put(len(self.memo), self._peek())

    def _op_get(self, instruction: Instruction) -> None:
        """GET, BINGET, LONG_BINGET: push the memoized object itself, not a copy."""
        key = self._int_arg(instruction)
        if key not in self.memo:
            self._raise(BrineUnexpectedStackValueError, f"Memo key {key} is not defined")

        self._push(self.memo[key])

    def _op_global(self, instruction: Instruction) -> None:
        module, name = self._pair_arg(instruction)
        self._push(BrineGlobal(module, name))

    def _op_stack_global(self, _instruction: Instruction) -> None:
        name: BrineString = self._pop_typed(BrineString, "name string")
        module: BrineString = self._pop_typed(BrineString, "module string")
        self._push(BrineGlobal(module.value, name.value))

    def _op_reduce(self, _instruction: Instruction) -> None:
        arg = self._pop_value()
        function: BrineGlobal = self._pop_typed(BrineGlobal, "global reference")
        self._push(self.registry.call(function.module, function.name, self._as_args(arg)))

    def _op_newobj(self, _instruction: Instruction) -> None:
        arg = self._pop_value()
        class_value = self._pop_value()
        self._push(self._construct(class_value, self._as_args(arg)))

    def _op_newobj_ex(self, _instruction: Instruction) -> None:
        kwargs = self._pop_value()
        args = self._pop_value()
        class_value = self._pop_value()
        self._push(self._construct(class_value, [args, kwargs]))

    def _op_inst(self, instruction: Instruction) -> None:
        module, name = self._pair_arg(instruction)
        args = self._pop_to_mark()
        self._push(self.registry.call(module, name, args))

    def _op_obj(self, _instruction: Instruction) -> None:
        values = self._pop_to_mark()
        if not values:
            self._raise(BrineUnexpectedStackValueError, "OBJ requires a class above the mark")

        self._push(self._construct(values[0], values[1:]))

    def _op_build(self, _instruction: Instruction) -> None:
        state = self._pop_value()
        target = self._pop_value()
        if isinstance(target, BrineDict) and isinstance(state, BrineDict):
            target.update(state)
            self._push(target)
            return

        self._push(self.registry.build(target, self._as_args(state)))

    def _op_persid(self, instruction: Instruction) -> None:
        pid = self._typed_arg(instruction, str)
        self._push(self.registry.call(PERSISTENT_LOAD_MODULE, PERSISTENT_LOAD_NAME, [BrineString(pid)]))

    def _op_binpersid(self, _instruction: Instruction) -> None:
        pid = self._pop_value()
        self._push(self.registry.call(PERSISTENT_LOAD_MODULE, PERSISTENT_LOAD_NAME, self._as_args(pid)))
