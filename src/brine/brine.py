"""Main Brine class - load pickle data without executing anything it asks for."""

import io
from typing import Any, BinaryIO

from brine.brine_call_registry import BrineBuildHandler, BrineCallHandler, BrineCallRegistry
from brine.brine_config import BrineConfig
from brine.brine_value import BrineValue
from brine.brine_vm import BrineVM


class Brine:
    """
    Safe pickle loader.

    Holds a configuration and a call registry, and drives a fresh BrineVM for
    each stream.  Handlers registered here apply to every subsequent load.

    Every symbolic call in the stream is offered to the registry.  Calls with
    no matching handler produce None, so by default nothing beyond plain data
    (and `collections.OrderedDict`) is ever constructed.
    """

    def __init__(self, config: BrineConfig | None = None, registry: BrineCallRegistry | None = None) -> None:
        """
        Initialize Brine.

        Args:
            config: Resource limits for each load
            registry: Call registry to use (one with the standard handlers if omitted)
        """
        self.config = config if config is not None else BrineConfig()
        self.config.validate()
        self.registry = registry if registry is not None else BrineCallRegistry.with_defaults()

    def register(self, module: str | None, name: str | None, handler: BrineCallHandler) -> None:
        """
        Register a call handler.

        Args:
            module: Module to match, or None for any module
            name: Name to match, or None for any name in the module
            handler: Callable receiving (module, name, args)
        """
        self.registry.register(module, name, handler)

    def register_build(self, handler: BrineBuildHandler | None) -> None:
        """Set the handler used by BUILD on non-mapping objects."""
        self.registry.register_build(handler)

    def interpreter(self, source: bytes | str | BinaryIO) -> BrineVM:
        """
        Create a VM for a source without running it.

        Args:
            source: Pickle bytes, a file path, or a readable binary stream

        Returns:
            A VM positioned at the first instruction
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            return BrineVM.from_stream(io.BytesIO(bytes(source)), self.config, self.registry)

        if isinstance(source, str):
            return BrineVM.from_file(source, self.config, self.registry)

        return BrineVM.from_stream(source, self.config, self.registry)

    def run(self, vm: BrineVM) -> BrineValue | None:
        """
        Step a VM until it reaches STOP or runs out of instructions.

        Args:
            vm: VM to drive

        Returns:
            The root value left on the stack

        Raises:
            BrineExecutionError: If an instruction cannot be executed
        """
        while vm.step(stop_before_terminal=True):
            pass

        return vm.root_value

    def loads(self, data: bytes) -> BrineValue | None:
        """Decode pickle bytes and return the root value."""
        return self.run(self.interpreter(data))

    def load(self, path: str) -> BrineValue | None:
        """Decode a pickle file and return the root value."""
        return self.run(self.interpreter(path))

    def loads_python(self, data: bytes) -> Any:
        """Decode pickle bytes and convert the root value to plain Python types."""
        root = self.loads(data)
        if root is None:
            return None

        return root.to_python()
