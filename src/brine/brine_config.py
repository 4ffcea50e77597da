"""
Configuration for Brine interpreters.
"""

import os
from dataclasses import asdict, dataclass
from typing import Any, Dict

import yaml

from brine.brine_error import BrineConfigError


DEFAULT_MAX_STACK_DEPTH = 50_000
DEFAULT_MAX_MEMO_ENTRIES = 100_000


@dataclass
class BrineConfig:
    """Resource limits for one interpreter.  Both are hard ceilings."""

    max_stack_depth: int = DEFAULT_MAX_STACK_DEPTH
    max_memo_entries: int = DEFAULT_MAX_MEMO_ENTRIES

    def validate(self) -> None:
        """
        Check the limits are usable.

        Raises:
            BrineConfigError: If a limit is not a positive integer
        """
        for name in ("max_stack_depth", "max_memo_entries"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise BrineConfigError(
                    message=f"Invalid {name}",
                    received=repr(value),
                    expected="positive integer"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BrineConfig':
        """Create configuration from a dictionary, applying defaults for missing keys."""
        unknown = set(data) - {"max_stack_depth", "max_memo_entries"}
        if unknown:
            raise BrineConfigError(
                message="Unknown configuration keys",
                received=", ".join(sorted(unknown)),
                expected="max_stack_depth, max_memo_entries"
            )

        config = cls(
            max_stack_depth=data.get("max_stack_depth", DEFAULT_MAX_STACK_DEPTH),
            max_memo_entries=data.get("max_memo_entries", DEFAULT_MAX_MEMO_ENTRIES)
        )
        config.validate()
        return config

    @classmethod
    def load_from_file(cls, config_path: str) -> 'BrineConfig':
        """Load configuration from YAML file."""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f)

            except yaml.YAMLError as e:
                raise BrineConfigError(message="Malformed configuration file", context=str(e)) from e

        if data is None:
            data = {}

        if not isinstance(data, dict):
            raise BrineConfigError(
                message="Configuration file must contain a mapping",
                received=type(data).__name__
            )

        return cls.from_dict(data)

    def save_to_file(self, config_path: str) -> None:
        """Save configuration to YAML file."""
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(asdict(self), f, default_flow_style=False, sort_keys=False)
