"""Tests for the stack machine: stepping, data opcodes, memo and limits."""

import struct

import pytest

from brine import (
    BRINE_MARK, BRINE_NONE, BrineBoolean, BrineCallRegistry, BrineConfig, BrineConfigError, BrineDict,
    BrineExceedMemoryLimitError, BrineExceedStackDepthLimitError, BrineFloat, BrineInteger, BrineList,
    BrineString, BrineUnexpectedArgumentError, BrineUnexpectedStackValueError, BrineUnsupportedOpcodeError,
    BrineVM, Instruction, Opcode,
)


# ============================================================================
# Stepping
# ============================================================================

class TestStepping:
    """The caller-driven step loop."""

    def test_step_count_matches_instructions(self, helpers):
        """Each instruction gives one True step, then every further step is False."""
        vm = helpers.vm(b'K\x01K\x02\x86.')
        assert len(vm.instructions) == 4
        for _ in range(4):
            assert vm.step() is True

        assert vm.step() is False
        assert vm.step() is False
        assert vm.finished

    def test_empty_program(self):
        vm = BrineVM([])
        assert vm.step() is False
        assert vm.root_value is None

    def test_stop_before_terminal(self, helpers):
        vm = helpers.vm(b'K\x01.')
        assert vm.step(stop_before_terminal=True) is True
        assert vm.step(stop_before_terminal=True) is False
        assert vm.pc == 1
        assert vm.step(stop_before_terminal=True) is False
        assert vm.step() is True
        assert vm.finished

    def test_stop_does_not_halt_plain_stepping(self, helpers):
        """STOP has no stack effect; instructions after it still run."""
        vm = helpers.vm(b'K\x01.K\x02.')
        helpers.run(vm)
        assert [v.to_python() for v in vm.stack] == [1, 2]

    def test_state_is_inspectable_between_steps(self, helpers):
        vm = helpers.vm(b'K\x01K\x02.')
        vm.step()
        assert vm.stack == [BrineInteger(1)]
        vm.step()
        assert vm.stack == [BrineInteger(1), BrineInteger(2)]

    def test_root_value_is_bottom_of_stack(self, helpers):
        vm = helpers.vm(b'K\x01K\x02.')
        helpers.run(vm)
        assert vm.root_value == BrineInteger(1)

    def test_truncated_stream_runs_its_prefix(self, helpers):
        vm = helpers.vm(b'K\x07\x8c\x05ab')
        assert helpers.run(vm) == 1
        assert vm.root_value == BrineInteger(7)

    def test_registry_can_change_between_steps(self, helpers):
        vm = helpers.vm(b'cm\nn\n)Rcm\nn\n)R.')
        for _ in range(3):
            vm.step()

        assert vm.stack == [BRINE_NONE]

        vm.register("m", "n", lambda module, name, args: [BrineInteger(9)])
        for _ in range(3):
            vm.step()

        assert vm.stack == [BRINE_NONE, BrineInteger(9)]

    def test_invalid_config_rejected(self):
        with pytest.raises(BrineConfigError):
            BrineVM([], BrineConfig(max_stack_depth=0))


# ============================================================================
# Scalars
# ============================================================================

class TestScalars:
    """Opcodes pushing single values."""

    @pytest.mark.parametrize("data,expected", [
        (b'I42\n.', 42),
        (b'I-3\n.', -3),
        (b'J' + struct.pack('<i', -100000) + b'.', -100000),
        (b'K\xff.', 255),
        (b'M\xff\xff.', 65535),
        (b'F1.5\n.', 1.5),
        (b'G' + struct.pack('>d', -0.25) + b'.', -0.25),
        (b'N.', None),
        (b'\x88.', True),
        (b'\x89.', False),
        (b"S'quoted'\n.", 'quoted'),
        (b'U\x03abc.', 'abc'),
        (b'T\x02\x00\x00\x00hi.', 'hi'),
        (b'Vline\n.', 'line'),
        (b'\x8c\x02hi.', 'hi'),
        (b'X\x03\x00\x00\x00hey.', 'hey'),
        (b'\x8d\x01\x00\x00\x00\x00\x00\x00\x00z.', 'z'),
        (b'C\x02\x00\x01.', b'\x00\x01'),
        (b'B\x01\x00\x00\x00\xff.', b'\xff'),
        (b'\x8e\x01\x00\x00\x00\x00\x00\x00\x00a.', b'a'),
        (b'\x96\x01\x00\x00\x00\x00\x00\x00\x00b.', b'b'),
    ])
    def test_scalar(self, helpers, data, expected):
        assert helpers.run_to_root(data) == expected

    def test_none_is_the_absence_singleton(self, helpers):
        vm = helpers.vm(b'N.')
        helpers.run(vm)
        assert vm.root_value is BRINE_NONE

    def test_booleans(self, helpers):
        vm = helpers.vm(b'\x88\x89.')
        helpers.run(vm)
        assert vm.stack == [BrineBoolean(True), BrineBoolean(False)]

    def test_framing_opcodes_have_no_effect(self, helpers):
        vm = helpers.vm(b'\x80\x04\x95\x03\x00\x00\x00\x00\x00\x00\x00K\x01.')
        helpers.run(vm)
        assert vm.stack == [BrineInteger(1)]


# ============================================================================
# Containers
# ============================================================================

class TestContainers:
    """List, tuple, set and dict construction."""

    def test_empty_containers(self, helpers):
        vm = helpers.vm(b']})\x8f.')
        helpers.run(vm)
        assert [type(v) for v in vm.stack] == [BrineList, BrineDict, BrineList, BrineList]

    def test_empty_dict_is_unordered(self, helpers):
        vm = helpers.vm(b'}.')
        helpers.run(vm)
        assert vm.root_value.ordered is False

    def test_tuple_from_mark(self, helpers):
        assert helpers.run_to_root(b'(K\x01K\x02K\x03t.') == [1, 2, 3]

    def test_tuple_with_nothing_above_mark(self, helpers):
        assert helpers.run_to_root(b'(t.') == []

    def test_tuple_keeps_values_below_mark(self, helpers):
        vm = helpers.vm(b'K\x09(K\x01t.')
        helpers.run(vm)
        assert vm.stack[0] == BrineInteger(9)
        assert vm.stack[1].to_python() == [1]

    @pytest.mark.parametrize("data,expected", [
        (b'K\x01\x85.', [1]),
        (b'K\x01K\x02\x86.', [1, 2]),
        (b'K\x01K\x02K\x03\x87.', [1, 2, 3]),
    ])
    def test_small_tuples(self, helpers, data, expected):
        assert helpers.run_to_root(data) == expected

    def test_list_and_frozenset_from_mark(self, helpers):
        assert helpers.run_to_root(b'(K\x01K\x02l.') == [1, 2]
        assert helpers.run_to_root(b'(K\x01\x91.') == [1]

    def test_append(self, helpers):
        assert helpers.run_to_root(b']K\x01aK\x02a.') == [1, 2]

    def test_appends(self, helpers):
        assert helpers.run_to_root(b'](K\x01K\x02K\x03e.') == [1, 2, 3]

    def test_additems(self, helpers):
        assert helpers.run_to_root(b'\x8f(K\x01K\x02\x90.') == [1, 2]

    def test_append_to_non_list(self, helpers):
        vm = helpers.vm(b'}K\x01a.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_setitem(self, helpers):
        assert helpers.run_to_root(b'}\x8c\x01aK\x01s.') == {'a': 1}

    def test_setitems(self, helpers):
        """EMPTY_DICT, MARK, "a", 1, SETITEMS yields {"a": 1}."""
        assert helpers.run_to_root(b'}(\x8c\x01aK\x01u.') == {'a': 1}

    def test_setitems_odd_count(self, helpers):
        vm = helpers.vm(b'}(\x8c\x01au.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_dict_from_mark(self, helpers):
        assert helpers.run_to_root(b'(\x8c\x01aK\x01\x8c\x01bK\x02d.') == {'a': 1, 'b': 2}

    def test_setitem_on_non_dict(self, helpers):
        vm = helpers.vm(b']\x8c\x01aK\x01s.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_non_string_keys_are_described(self, helpers):
        assert helpers.run_to_root(b'}K\x05\x8c\x01vs.') == {'5': 'v'}

    def test_later_key_wins(self, helpers):
        assert helpers.run_to_root(b'}(\x8c\x01kK\x01\x8c\x01kK\x02u.') == {'k': 2}

    def test_insertion_order_preserved(self, helpers):
        result = helpers.run_to_root(b'}(\x8c\x01zK\x01\x8c\x01aK\x02u.')
        assert list(result) == ['z', 'a']

    def test_nested(self, helpers):
        assert helpers.run_to_root(b'}\x8c\x01l](K\x01K\x02es.') == {'l': [1, 2]}


# ============================================================================
# Stack manipulation
# ============================================================================

class TestStackOps:
    """MARK, POP, POP_MARK and DUP."""

    def test_pop(self, helpers):
        vm = helpers.vm(b'K\x01K\x020.')
        helpers.run(vm)
        assert vm.stack == [BrineInteger(1)]

    def test_pop_mark(self, helpers):
        vm = helpers.vm(b'K\x01(K\x02K\x031.')
        helpers.run(vm)
        assert vm.stack == [BrineInteger(1)]

    def test_mark_is_pushed(self, helpers):
        vm = helpers.vm(b'(')
        helpers.run(vm)
        assert vm.stack == [BRINE_MARK]

    def test_dup_pushes_same_object(self, helpers):
        vm = helpers.vm(b']2.')
        helpers.run(vm)
        assert vm.stack[0] is vm.stack[1]

    def test_pop_empty_stack(self, helpers):
        vm = helpers.vm(b'0.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_missing_mark(self, helpers):
        vm = helpers.vm(b'K\x01t.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_mark_is_not_an_operand(self, helpers):
        vm = helpers.vm(b'(\x85.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_error_carries_location(self, helpers):
        vm = helpers.vm(b'K\x01t.')
        with pytest.raises(BrineUnexpectedStackValueError) as exc_info:
            helpers.run(vm)

        assert exc_info.value.position == 2
        assert exc_info.value.opcode == "TUPLE"

    def test_cyclic_operand_in_error(self, helpers):
        """A self-containing list in the wrong stack slot is reported, not recursed into."""
        vm = helpers.vm(b']q\x00h\x00a]R.')
        with pytest.raises(BrineUnexpectedStackValueError) as exc_info:
            helpers.run(vm)

        assert exc_info.value.received == "[[...]] (list)"


# ============================================================================
# Memo
# ============================================================================

class TestMemo:
    """PUT, GET and MEMOIZE."""

    def test_put_does_not_pop(self, helpers):
        vm = helpers.vm(b'K\x05q\x03.')
        helpers.run(vm)
        assert vm.stack == [BrineInteger(5)]
        assert vm.memo == {3: BrineInteger(5)}

    def test_get(self, helpers):
        vm = helpers.vm(b'K\x05q\x030h\x03.')
        helpers.run(vm)
        assert vm.stack == [BrineInteger(5)]

    def test_text_put_and_get(self, helpers):
        assert helpers.run_to_root(b'K\x05p7\n0g7\n.') == 5

    def test_long_put_and_get(self, helpers):
        vm = helpers.vm(b'K\x05r\x00\x00\x01\x000j\x00\x00\x01\x00.')
        helpers.run(vm)
        assert vm.memo == {65536: BrineInteger(5)}
        assert vm.stack == [BrineInteger(5)]

    def test_memoize_uses_next_slot(self, helpers):
        vm = helpers.vm(b'K\x01\x94K\x02\x94.')
        helpers.run(vm)
        assert vm.memo == {0: BrineInteger(1), 1: BrineInteger(2)}

    def test_get_undefined_key(self, helpers):
        vm = helpers.vm(b'h\x09.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_put_on_empty_stack(self, helpers):
        vm = helpers.vm(b'q\x00.')
        with pytest.raises(BrineUnexpectedStackValueError):
            helpers.run(vm)

    def test_aliasing(self, helpers):
        """Mutating a list fetched from the memo mutates the original."""
        data = b']q\x00h\x00K\x01a0h\x00K\x02a0.'
        vm = helpers.vm(data)
        helpers.run(vm)
        assert len(vm.stack) == 1
        assert vm.root_value is vm.memo[0]
        assert vm.root_value.to_python() == [1, 2]

    def test_aliasing_dict(self, helpers):
        data = b'}q\x01h\x01\x8c\x01kK\x01s0.'
        assert helpers.run_to_root(data) == {'k': 1}


# ============================================================================
# Limits
# ============================================================================

class TestLimits:
    """Stack depth and memo size ceilings."""

    def test_stack_limit(self, helpers):
        vm = helpers.vm(b'K\x01K\x02K\x03K\x04.', max_stack_depth=3)
        for _ in range(3):
            vm.step()

        with pytest.raises(BrineExceedStackDepthLimitError):
            vm.step()

        assert len(vm.stack) == 3

    def test_stack_at_limit_is_fine(self, helpers):
        vm = helpers.vm(b'K\x01K\x02K\x03.', max_stack_depth=3)
        helpers.run(vm)
        assert len(vm.stack) == 3

    def test_dup_respects_limit(self, helpers):
        vm = helpers.vm(b'K\x012.', max_stack_depth=1)
        with pytest.raises(BrineExceedStackDepthLimitError):
            helpers.run(vm)

    def test_memo_limit(self, helpers):
        vm = helpers.vm(b'K\x01q\x00q\x01q\x02.', max_memo_entries=2)
        with pytest.raises(BrineExceedMemoryLimitError):
            helpers.run(vm)

        assert len(vm.memo) == 2

    def test_memo_limit_counts_overwrites(self, helpers):
        vm = helpers.vm(b'K\x01q\x00q\x00.', max_memo_entries=1)
        with pytest.raises(BrineExceedMemoryLimitError):
            helpers.run(vm)


# ============================================================================
# Unsupported and malformed
# ============================================================================

class TestUnsupported:
    """Opcodes that decode but do not execute, and bad arguments."""

    @pytest.mark.parametrize("data", [
        b'L5L\n.',
        b'\x8a\x01\x05.',
        b'\x8b\x01\x00\x00\x00\x05.',
        b'\x82\x01.',
        b'\x83\x01\x00.',
        b'\x84\x01\x00\x00\x00.',
    ])
    def test_unsupported_opcodes(self, helpers, data):
        vm = helpers.vm(data)
        assert len(vm.instructions) == 2
        with pytest.raises(BrineUnsupportedOpcodeError):
            vm.step()

    def test_wrong_argument_type(self):
        vm = BrineVM([Instruction(Opcode.BININT1, "one", 0)])
        with pytest.raises(BrineUnexpectedArgumentError):
            vm.step()

    def test_boolean_is_not_an_integer_argument(self):
        vm = BrineVM([Instruction(Opcode.BINPUT, True, 0)])
        with pytest.raises(BrineUnexpectedArgumentError):
            vm.step()

    def test_wrong_global_argument(self):
        vm = BrineVM([Instruction(Opcode.GLOBAL, "os.system", 0)])
        with pytest.raises(BrineUnexpectedArgumentError):
            vm.step()


def test_vm_default_registry_is_empty(helpers):
    """A bare VM does not even know OrderedDict."""
    vm = helpers.vm(b'ccollections\nOrderedDict\n)R.')
    helpers.run(vm)
    assert vm.root_value is BRINE_NONE


def test_vm_uses_given_registry(helpers):
    vm = BrineVM.from_bytes(b'ccollections\nOrderedDict\n)R.', registry=BrineCallRegistry.with_defaults())
    helpers.run(vm)
    assert isinstance(vm.root_value, BrineDict)
    assert vm.root_value.ordered


def test_vm_from_file(tmp_path, helpers):
    path = tmp_path / "v.pkl"
    path.write_bytes(b'\x8c\x03abc.')
    vm = BrineVM.from_file(str(path))
    helpers.run(vm)
    assert vm.root_value == BrineString("abc")


def test_float_values(helpers):
    vm = helpers.vm(b'G' + struct.pack('>d', 3.5) + b'.')
    helpers.run(vm)
    assert vm.root_value == BrineFloat(3.5)
