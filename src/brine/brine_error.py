"""Exception classes for Brine with detailed context."""

from typing import Any


class BrineError(Exception):
    """Base exception for Brine errors with detailed context information."""

    def __init__(
        self,
        message: str,
        context: str | None = None,
        expected: str | None = None,
        received: str | None = None,
        suggestion: str | None = None,
        position: int | None = None,
        opcode: str | None = None
    ):
        """
        Initialize detailed error.

        Args:
            message: Core error description
            context: Additional context information
            expected: What was expected
            received: What was actually received
            suggestion: Suggestion for fixing the error
            position: Byte offset in the pickle stream where the error occurred
            opcode: Name of the opcode being decoded or executed
        """
        self.message = message
        self.context = context
        self.expected = expected
        self.received = received
        self.suggestion = suggestion
        self.position = position
        self.opcode = opcode

        super().__init__(self._format_detailed_message())

    def _format_detailed_message(self) -> str:
        """Format the error message with all available details."""
        parts = [f"Error: {self.message}"]

        # Add location information if available
        if self.opcode is not None and self.position is not None:
            parts.append(f"Location: {self.opcode} at offset {self.position}")

        elif self.position is not None:
            parts.append(f"Location: offset {self.position}")

        if self.received:
            parts.append(f"Received: {self.received}")

        if self.expected:
            parts.append(f"Expected: {self.expected}")

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.suggestion:
            parts.append(f"Suggestion: {self.suggestion}")

        return "\n".join(parts)


class BrineDecodeError(BrineError):
    """Argument decoding errors.  These never escape the disassembler."""


class BrineEndOfFileError(BrineDecodeError):
    """The stream ended before an argument was fully read."""

    def __init__(self, needed: int | None = None, available: int | None = None, **kwargs: Any) -> None:
        """
        Initialize end-of-file error.

        Args:
            needed: Number of bytes the reader required, if known
            available: Number of bytes actually available, if known
            **kwargs: Additional error context
        """
        self.needed = needed
        self.available = available
        received = None
        if needed is not None and available is not None:
            received = f"{available} of {needed} bytes"

        super().__init__(message="Unexpected end of stream", received=received, **kwargs)


class BrineInvalidValueError(BrineDecodeError):
    """Bytes were present but could not be parsed as the expected type."""


class BrineExecutionError(BrineError):
    """Errors raised while stepping the stack machine."""


class BrineExceedStackDepthLimitError(BrineExecutionError):
    """A push would take the evaluation stack beyond its configured depth."""


class BrineExceedMemoryLimitError(BrineExecutionError):
    """A memo store would take the memo table beyond its configured size."""


class BrineUnsupportedOpcodeError(BrineExecutionError):
    """The opcode decodes but has no execution semantics."""


class BrineUnexpectedArgumentError(BrineExecutionError):
    """A decoded argument has the wrong runtime type for its opcode."""


class BrineUnexpectedStackValueError(BrineExecutionError):
    """Stack underflow, a wrong operand variant, or a missing memo entry."""


class BrineConfigError(BrineError):
    """Invalid configuration values or configuration file."""
