"""Tests for the Brine loader facade."""

import io
from collections import OrderedDict

import pytest

from brine import (
    BRINE_NONE, Brine, BrineCallRegistry, BrineConfig, BrineConfigError, BrineDict,
    BrineExceedStackDepthLimitError, BrineString, BrineUnexpectedStackValueError, Opcode,
)


class TestLoads:
    """Loading from bytes."""

    def test_loads_returns_root_value(self, brine):
        assert brine.loads(b'}(\x8c\x01aK\x01u.').to_python() == {'a': 1}

    def test_loads_python(self, brine):
        assert brine.loads_python(b'(K\x01K\x02l.') == [1, 2]

    def test_empty_input(self, brine):
        assert brine.loads(b'') is None
        assert brine.loads_python(b'') is None

    def test_dangerous_call_is_inert(self, brine):
        assert brine.loads(b'cos\nsystem\n(S\'echo hi\'\ntR.') is BRINE_NONE

    def test_ordered_dict_by_default(self, brine):
        result = brine.loads_python(b'ccollections\nOrderedDict\n)R(\x8c\x01bK\x01\x8c\x01aK\x02u.')
        assert isinstance(result, OrderedDict)
        assert list(result.items()) == [('b', 1), ('a', 2)]

    def test_custom_registry_replaces_defaults(self):
        brine = Brine(registry=BrineCallRegistry())
        assert brine.loads(b'ccollections\nOrderedDict\n)R.') is BRINE_NONE

    def test_register(self, brine):
        brine.register("m", "f", lambda module, name, args: [BrineString("ok")])
        assert brine.loads_python(b'cm\nf\n)R.') == "ok"

    def test_register_build(self, brine):
        brine.register_build(lambda target, args: [BrineString("built")])
        assert brine.loads_python(b'cm\nf\n)R}b.') == "built"

    def test_handlers_apply_to_every_load(self, brine):
        brine.register("m", None, lambda module, name, args: [BrineString(name)])
        assert brine.loads_python(b'cm\nx\n)R.') == "x"
        assert brine.loads_python(b'cm\ny\n)R.') == "y"

    def test_limits_apply(self):
        brine = Brine(BrineConfig(max_stack_depth=2))
        with pytest.raises(BrineExceedStackDepthLimitError):
            brine.loads(b'K\x01K\x02K\x03.')

    def test_invalid_config(self):
        with pytest.raises(BrineConfigError):
            Brine(BrineConfig(max_memo_entries=0))


class TestSources:
    """Bytes, paths and streams."""

    def test_load_path(self, brine, tmp_path):
        path = tmp_path / "x.pkl"
        path.write_bytes(b'K\x2a.')
        assert brine.load(str(path)).to_python() == 42

    def test_interpreter_from_stream(self, brine):
        vm = brine.interpreter(io.BytesIO(b'K\x01.'))
        assert [i.opcode for i in vm.instructions] == [Opcode.BININT1, Opcode.STOP]

    def test_interpreter_from_bytearray(self, brine):
        vm = brine.interpreter(bytearray(b'N.'))
        assert len(vm.instructions) == 2

    def test_interpreter_shares_registry(self, brine):
        vm = brine.interpreter(b'N.')
        assert vm.registry is brine.registry

    def test_run_stops_before_terminal(self, brine):
        vm = brine.interpreter(b'K\x01.K\x02.')
        assert brine.run(vm).to_python() == 1
        assert vm.pc == 1
        assert len(vm.stack) == 1

    def test_fresh_state_per_load(self, brine):
        brine.loads(b'}q\x00.')
        assert isinstance(brine.loads(b'}.'), BrineDict)
        with pytest.raises(BrineUnexpectedStackValueError):
            brine.loads(b'h\x00.')
