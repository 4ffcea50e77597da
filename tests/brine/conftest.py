"""Shared fixtures and utilities for Brine tests."""

import struct
from typing import Any

import pytest

from brine import Brine, BrineConfig, BrineDisassembler, BrineVM


@pytest.fixture
def brine():
    """Create a fresh Brine instance for each test."""
    return Brine()


@pytest.fixture
def disassembler():
    """Create a disassembler."""
    return BrineDisassembler()


class BrineTestHelpers:
    """Helpers for building and running pickle streams."""

    @staticmethod
    def unicode(text: str) -> bytes:
        """SHORT_BINUNICODE or BINUNICODE for a string."""
        data = text.encode('utf-8')
        if len(data) < 256:
            return b'\x8c' + bytes([len(data)]) + data

        return b'X' + struct.pack('<I', len(data)) + data

    @staticmethod
    def vm(data: bytes, max_stack_depth: int = 50_000, max_memo_entries: int = 100_000) -> BrineVM:
        """Create a VM with an empty registry."""
        config = BrineConfig(max_stack_depth=max_stack_depth, max_memo_entries=max_memo_entries)
        return BrineVM.from_bytes(data, config)

    @staticmethod
    def run(vm: BrineVM) -> int:
        """Step a VM to the end and return the number of executed instructions."""
        count = 0
        while vm.step():
            count += 1

        return count

    @staticmethod
    def run_to_root(data: bytes) -> Any:
        """Run a stream with an empty registry and return the root as Python data."""
        vm = BrineTestHelpers.vm(data)
        BrineTestHelpers.run(vm)
        root = vm.root_value
        return None if root is None else root.to_python()


@pytest.fixture
def helpers():
    """Provide test helper utilities."""
    return BrineTestHelpers
