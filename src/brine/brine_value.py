"""Brine Value hierarchy - the decoded values held on the stack and in the memo.

Scalars are immutable.  Lists and dicts are mutable and compare by identity:
a container stored in the memo and later fetched back is the very same object,
so in-place mutation after a GET is visible everywhere the container is
referenced.
"""

from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Set, Tuple


class BrineValue(ABC):
    """Abstract base class for all Brine decoded values."""

    @abstractmethod
    def to_python(self) -> Any:
        """Convert to a plain Python value."""

    @abstractmethod
    def type_name(self) -> str:
        """Return Brine type name for error messages."""

    @abstractmethod
    def describe(self) -> str:
        """Describe the value."""


@dataclass(frozen=True)
class BrineNone(BrineValue):
    """The absence sentinel (pickle's None)."""

    def to_python(self) -> None:
        return None

    def type_name(self) -> str:
        return "none"

    def describe(self) -> str:
        return "None"


# Module-level singleton - there is only one absence value.
BRINE_NONE = BrineNone()


@dataclass(frozen=True)
class BrineMark(BrineValue):
    """Stack marker opening a variable-arity group.  Only ever lives on the stack."""

    def to_python(self) -> Any:
        raise TypeError("A mark has no Python value")

    def type_name(self) -> str:
        return "mark"

    def describe(self) -> str:
        return "<mark>"


BRINE_MARK = BrineMark()


@dataclass(frozen=True)
class BrineBoolean(BrineValue):
    """Represents boolean values."""
    value: bool

    def to_python(self) -> bool:
        return self.value

    def type_name(self) -> str:
        return "boolean"

    def describe(self) -> str:
        return "True" if self.value else "False"


@dataclass(frozen=True)
class BrineInteger(BrineValue):
    """Represents 64-bit signed integer values."""
    value: int

    def to_python(self) -> int:
        return self.value

    def type_name(self) -> str:
        return "integer"

    def describe(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class BrineFloat(BrineValue):
    """Represents 64-bit floating-point values."""
    value: float

    def to_python(self) -> float:
        return self.value

    def type_name(self) -> str:
        return "float"

    def describe(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class BrineString(BrineValue):
    """Represents text values."""
    value: str

    def to_python(self) -> str:
        return self.value

    def type_name(self) -> str:
        return "string"

    def describe(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class BrineBytes(BrineValue):
    """Represents raw byte buffers."""
    value: bytes

    def to_python(self) -> bytes:
        return self.value

    def type_name(self) -> str:
        return "bytes"

    def describe(self) -> str:
        if len(self.value) > 32:
            return f"<{len(self.value)} bytes>"

        return repr(self.value)


@dataclass(frozen=True)
class BrineGlobal(BrineValue):
    """
    A symbolic reference to `module.name`.

    This is only ever data.  Nothing looks the symbol up; calls through it are
    routed to the call registry.
    """
    module: str
    name: str

    def to_python(self) -> Tuple[str, str]:
        return (self.module, self.name)

    def type_name(self) -> str:
        return "global"

    def describe(self) -> str:
        return f"{self.module}.{self.name}"


@dataclass(frozen=True)
class BrineOpaque(BrineValue):
    """Wraps any value produced by an embedder's handler."""
    value: Any

    def to_python(self) -> Any:
        return self.value

    def type_name(self) -> str:
        return "opaque"

    def describe(self) -> str:
        return f"<opaque {type(self.value).__name__}>"


@dataclass(eq=False)
class BrineList(BrineValue):
    """
    Ordered mutable list.

    Used for pickle lists, tuples and sets alike.  Equality is identity.
    """
    elements: List[BrineValue] = field(default_factory=list)

    def append(self, value: BrineValue) -> None:
        """Append a value in place."""
        self.elements.append(value)

    def extend(self, values: Iterable[BrineValue]) -> None:
        """Append several values in place, preserving their order."""
        self.elements.extend(values)

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[BrineValue]:
        return iter(self.elements)

    def __getitem__(self, index: int) -> BrineValue:
        return self.elements[index]

    def to_python(self) -> List[Any]:
        return _convert(self, {})

    def type_name(self) -> str:
        return "list"

    def describe(self) -> str:
        return _describe(self, set(), [DESCRIBE_LIMIT])


@dataclass(eq=False)
class BrineDict(BrineValue):
    """
    String-keyed mutable mapping.

    Whether the mapping is ordered is chosen once at creation and only affects
    the Python conversion: ordered mappings convert to `OrderedDict`.
    """
    ordered: bool = False
    entries: Dict[str, BrineValue] = field(default_factory=dict)

    def __setitem__(self, key: str, value: BrineValue) -> None:
        self.entries[key] = value

    def __getitem__(self, key: str) -> BrineValue:
        return self.entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def items(self) -> Iterable[Tuple[str, BrineValue]]:
        """Return the key/value pairs."""
        return self.entries.items()

    def update(self, other: 'BrineDict') -> None:
        """Merge another mapping's entries into this one in place."""
        self.entries.update(other.entries)

    def to_python(self) -> Dict[str, Any]:
        return _convert(self, {})

    def type_name(self) -> str:
        return "ordered-dict" if self.ordered else "dict"

    def describe(self) -> str:
        return _describe(self, set(), [DESCRIBE_LIMIT])


# Most container elements included in one description
DESCRIBE_LIMIT = 1000

# Deepest container nesting shown in a description
DESCRIBE_DEPTH = 64


def _convert(value: BrineValue, converted: Dict[int, Any]) -> Any:
    """
    Convert a value, reusing the result for containers already converted.

    Memo references can make lists and dicts contain themselves.  Each
    container is converted once, so shared references stay shared and cycles
    come out as cyclic Python objects.  Containers are filled from a work list
    rather than by recursion, so nesting depth is not limited by the Python
    stack.
    """
    pending: List[Tuple[BrineValue, Any]] = []

    def place(item: BrineValue) -> Any:
        # Marks can be left behind by malformed streams; keep conversion total.
        if isinstance(item, BrineMark):
            return item

        if not isinstance(item, (BrineList, BrineDict)):
            return item.to_python()

        existing = converted.get(id(item))
        if existing is None:
            if isinstance(item, BrineList):
                existing = []

            else:
                existing = OrderedDict() if item.ordered else {}

            converted[id(item)] = existing
            pending.append((item, existing))

        return existing

    result = place(value)
    while pending:
        container, target = pending.pop()
        if isinstance(container, BrineList):
            for element in container.elements:
                target.append(place(element))

        else:
            for key, element in container.entries.items():
                target[key] = place(element)

    return result


def _describe(value: BrineValue, active: Set[int], budget: List[int]) -> str:
    """
    Describe a value, printing `[...]` or `{...}` for a container inside itself.

    `budget` caps the number of elements described in total, so heavily
    shared structures cannot produce exponentially long text.  Containers
    nested deeper than DESCRIBE_DEPTH are elided the same way as cycles.
    """
    if isinstance(value, BrineList):
        opening, closing = "[", "]"
        items: Iterable[Tuple[str | None, BrineValue]] = ((None, v) for v in value.elements)

    elif isinstance(value, BrineDict):
        opening, closing = "{", "}"
        items = value.entries.items()

    else:
        return value.describe()

    if id(value) in active or len(active) >= DESCRIBE_DEPTH:
        return f"{opening}...{closing}"

    active.add(id(value))
    parts = []
    for key, element in items:
        if budget[0] <= 0:
            parts.append("...")
            break

        budget[0] -= 1
        text = _describe(element, active, budget)
        parts.append(text if key is None else f"{key!r}: {text}")

    active.discard(id(value))
    return opening + ", ".join(parts) + closing


def key_text(value: BrineValue) -> str:
    """Return the mapping key used for a value: text as-is, anything else described."""
    if isinstance(value, BrineString):
        return value.value

    return value.describe()


def wrap_python(value: Any) -> BrineValue:
    """
    Convert a handler result element to a Brine value.

    Args:
        value: None, an existing BrineValue, or any embedder object

    Returns:
        BRINE_NONE for None, the value itself if already a BrineValue, else a BrineOpaque
    """
    if value is None:
        return BRINE_NONE

    if isinstance(value, BrineValue):
        return value

    return BrineOpaque(value)


def unwrap_argument(value: BrineValue) -> BrineValue | None:
    """Translate the absence sentinel to None for handler arguments."""
    if isinstance(value, BrineNone):
        return None

    return value
