"""Brine trace watcher implementations.

Watchers receive every instruction the VM executes, which is useful when
working out what an unfamiliar pickle is trying to construct.
"""

from typing import List

from brine.brine_bytecode import Instruction


class BrineStdoutTraceWatcher:
    """Watcher that prints each executed instruction to stdout."""

    def on_instruction(self, instruction: Instruction, stack_depth: int) -> None:
        """
        Print the instruction.

        Args:
            instruction: The instruction just executed
            stack_depth: Stack depth after execution
        """
        print(f"{instruction!r}  [depth {stack_depth}]")


class BrineBufferingTraceWatcher:
    """
    Watcher that buffers executed instructions for programmatic access.

    Includes a configurable limit to prevent unbounded memory growth on
    very long streams.
    """

    def __init__(self, max_traces: int = 10000) -> None:
        """
        Initialize buffering trace watcher.

        Args:
            max_traces: Maximum number of instructions to buffer.
                       When the limit is reached, the oldest are discarded.
        """
        self.traces: List[Instruction] = []
        self.max_traces = max_traces
        self.total_traces = 0
        self.clipped = False

    def on_instruction(self, instruction: Instruction, stack_depth: int) -> None:  # pylint: disable=unused-argument
        """Buffer the instruction."""
        self.total_traces += 1

        if len(self.traces) >= self.max_traces:
            self.traces.pop(0)
            self.clipped = True

        self.traces.append(instruction)

    def get_traces(self) -> List[Instruction]:
        """
        Get all buffered instructions.

        Returns:
            List of instructions, oldest first
        """
        return self.traces.copy()

    def clear(self) -> None:
        """Clear all buffered instructions."""
        self.traces.clear()
        self.total_traces = 0
        self.clipped = False
