"""Call-interception registry - the only path from a symbolic call to a real value."""

import logging
from typing import Any, Callable, Dict, List, Sequence, Tuple

from brine.brine_value import BRINE_NONE, BrineDict, BrineList, BrineValue, unwrap_argument, wrap_python


# (module, name, args) -> results
BrineCallHandler = Callable[[str, str, List[BrineValue | None]], Sequence[Any]]

# (target, args) -> results
BrineBuildHandler = Callable[[BrineValue, List[BrineValue | None]], Sequence[Any]]


class BrineCallRegistry:
    """
    Routes symbolic calls to embedder-supplied handlers.

    Handlers are keyed by (module, name), where either part may be None as a
    wildcard.  Lookup tries the exact pair, then (module, None), then
    (None, None).  When nothing matches the call produces the absence value:
    an unrecognised symbol constructs nothing and runs nothing.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Tuple[str | None, str | None], BrineCallHandler] = {}
        self._build_handler: BrineBuildHandler | None = None
        self._logger = logging.getLogger("BrineCallRegistry")

    @classmethod
    def with_defaults(cls) -> 'BrineCallRegistry':
        """
        Create a registry with the standard handlers installed.

        `collections.OrderedDict` constructs an empty ordered mapping.

        Returns:
            New registry
        """
        registry = cls()
        registry.register("collections", "OrderedDict", _ordered_dict_handler)
        return registry

    def register(self, module: str | None, name: str | None, handler: BrineCallHandler) -> None:
        """
        Register a handler, replacing any existing one for the same key.

        Args:
            module: Module to match, or None for any module
            name: Name to match, or None for any name in the module
            handler: Callable receiving (module, name, args) and returning a sequence of results
        """
        self._handlers[(module, name)] = handler
        self._logger.debug("Registered handler for %s.%s", module or "*", name or "*")

    def unregister(self, module: str | None, name: str | None) -> None:
        """
        Remove the handler registered for exactly this key, if any.

        Args:
            module: Module part of the key
            name: Name part of the key
        """
        if self._handlers.pop((module, name), None) is not None:
            self._logger.debug("Unregistered handler for %s.%s", module or "*", name or "*")

    def register_build(self, handler: BrineBuildHandler | None) -> None:
        """
        Set the handler that applies BUILD state to non-mapping objects.

        Args:
            handler: Callable receiving (target, args), or None to remove it
        """
        self._build_handler = handler

    def has_handler(self, module: str, name: str) -> bool:
        """Return True if some handler, wildcard or not, would receive this call."""
        return self._lookup(module, name) is not None

    def _lookup(self, module: str, name: str) -> BrineCallHandler | None:
        handlers = self._handlers
        handler = handlers.get((module, name))
        if handler is not None:
            return handler

        handler = handlers.get((module, None))
        if handler is not None:
            return handler

        return handlers.get((None, None))

    def call(self, module: str, name: str, args: Sequence[BrineValue]) -> BrineValue:
        """
        Dispatch a symbolic call.

        Args:
            module: Module of the symbol being called
            name: Name of the symbol being called
            args: Positional arguments

        Returns:
            The handler's result, or BRINE_NONE if no handler matches
        """
        handler = self._lookup(module, name)
        if handler is None:
            self._logger.debug("No handler for %s.%s, returning None", module, name)
            return BRINE_NONE

        results = handler(module, name, [unwrap_argument(a) for a in args])
        return collapse_results(results)

    def build(self, target: BrineValue, args: Sequence[BrineValue]) -> BrineValue:
        """
        Apply state to an object through the build handler.

        Args:
            target: Object receiving the state
            args: State arguments

        Returns:
            The handler's result, or BRINE_NONE if no build handler is set
        """
        if self._build_handler is None:
            self._logger.debug("No build handler for %s, returning None", target.describe())
            return BRINE_NONE

        results = self._build_handler(target, [unwrap_argument(a) for a in args])
        return collapse_results(results)


def collapse_results(results: Sequence[Any]) -> BrineValue:
    """
    Turn a handler's result sequence into one value.

    A single result stands for itself; zero or several results become a list.
    """
    values = [wrap_python(r) for r in results]
    if len(values) == 1:
        return values[0]

    return BrineList(values)


def _ordered_dict_handler(_module: str, _name: str, _args: List[BrineValue | None]) -> Sequence[Any]:
    return [BrineDict(ordered=True)]
