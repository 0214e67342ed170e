"""Tests for the transition engine and opcode registry."""

import sys
from itertools import product
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from ifc_cpu.cpu import LabeledCPU, lookup, observe_high, observe_low, reset, step
from ifc_cpu.decode import Instruction, Opcode, decode_instruction
from ifc_cpu.errors import InvalidOperand
from ifc_cpu.registry import OpcodeRegistry, get_registry
from ifc_cpu.state import (
    LOW_FALSE,
    Label,
    LabeledValue,
    RegisterName,
    all_labeled_values,
    create_reset_state,
    make_state,
)


def run(state, program, high=False, low=False, arm_skip=False):
    """Run instruction literals separated by ';' on one machine."""
    for text in program.split(";"):
        state = step(state, high, low, decode_instruction(text), arm_skip=arm_skip)
    return state


class TestRegistry:
    """Test the frozen opcode registry."""

    def test_registry_is_frozen(self):
        registry = get_registry()
        assert registry.is_frozen() is True
        with pytest.raises(RuntimeError, match="frozen"):
            registry.register(Opcode.COPY, lambda a, b: a)

    def test_every_opcode_registered(self):
        assert OpcodeRegistry().get_valid_keys() == set(Opcode)

    def test_unknown_key(self):
        """A key outside the opcode set is rejected, not defaulted."""
        with pytest.raises(InvalidOperand):
            get_registry().execute("Copy", LOW_FALSE, LOW_FALSE)

    def test_binary_labels_join(self):
        """And/Or result label is the join of operand labels."""
        registry = get_registry()
        for opcode in (Opcode.AND, Opcode.OR):
            for a, b in product(all_labeled_values(), repeat=2):
                result = registry.execute(opcode, a, b)
                expected = Label.HIGH if (a.is_high or b.is_high) else Label.LOW
                assert result.label is expected

    def test_binary_values(self):
        registry = get_registry()
        for a, b in product(all_labeled_values(), repeat=2):
            assert registry.execute(Opcode.AND, a, b).value == (a.value and b.value)
            assert registry.execute(Opcode.OR, a, b).value == (a.value or b.value)

    def test_no_opcode_lowers_high(self):
        """Only LabelOf yields Low from High input, and it carries no value bit."""
        registry = get_registry()
        high_values = [v for v in all_labeled_values() if v.is_high]
        for opcode in (Opcode.COPY, Opcode.NOT, Opcode.AND, Opcode.OR, Opcode.CLASSIFY):
            for a, b in product(high_values, repeat=2):
                assert registry.execute(opcode, a, b).label is Label.HIGH
        results = {registry.execute(Opcode.LABEL_OF, v, LOW_FALSE) for v in high_values}
        assert results == {LabeledValue(True, Label.LOW)}

    def test_classify_always_high(self):
        for value in all_labeled_values():
            result = get_registry().execute(Opcode.CLASSIFY, value, LOW_FALSE)
            assert result == LabeledValue(value.value, Label.HIGH)


class TestLookup:
    """Test operand resolution."""

    def test_ephemeral_registers(self):
        state = create_reset_state()
        assert lookup(state, RegisterName.ZERO, True, True) == LOW_FALSE
        assert lookup(state, RegisterName.INPUT_HIGH, True, False) == LabeledValue(True, Label.HIGH)
        assert lookup(state, RegisterName.INPUT_LOW, False, True) == LabeledValue(True, Label.LOW)

    def test_stored_register(self):
        state = make_state(RegC=(True, Label.HIGH))
        assert lookup(state, RegisterName.REG_C, False, False) == LabeledValue(True, Label.HIGH)

    def test_invalid(self):
        with pytest.raises(InvalidOperand):
            lookup(create_reset_state(), "RegA", False, False)


class TestStep:
    """Test per-opcode transition semantics."""

    def test_copy_keeps_label(self):
        state = run(create_reset_state(), "Copy InputHigh RegA", high=True)
        assert state.get_register("RegA") == LabeledValue(True, Label.HIGH)

    def test_not(self):
        state = run(create_reset_state(), "Not Zero RegB")
        assert state.get_register("RegB") == LabeledValue(True, Label.LOW)

    def test_and_or(self):
        state = run(create_reset_state(), "Or InputLow InputHigh RegA; And InputLow InputLow RegB", low=True)
        assert state.get_register("RegA") == LabeledValue(True, Label.HIGH)
        assert state.get_register("RegB") == LabeledValue(True, Label.LOW)

    def test_classify(self):
        state = run(create_reset_state(), "Classify InputLow OutputLow", low=True)
        assert state.output_low == LabeledValue(True, Label.HIGH)

    def test_label_of(self):
        state = run(create_reset_state(), "Copy InputHigh RegA; LabelOf RegA RegB")
        assert state.get_register("RegB") == LabeledValue(True, Label.LOW)

    def test_other_registers_unchanged(self):
        before = make_state(RegA=(True, Label.HIGH), RegC=(True, Label.LOW))
        after = run(before, "Not Zero RegB")
        for name in ("OutputHigh", "OutputLow", "RegA", "RegC"):
            assert after.get_register(name) == before.get_register(name)

    def test_pure(self):
        """step never mutates its input state."""
        before = create_reset_state()
        snapshot = before.snapshot()
        step(before, True, True, decode_instruction("Copy InputHigh OutputLow"))
        assert before.snapshot() == snapshot

    @pytest.mark.parametrize("dst", ["Zero", "InputHigh", "InputLow"])
    def test_read_only_destination_is_noop(self, dst):
        before = make_state(RegA=(True, Label.LOW))
        after = run(before, f"Copy RegA {dst}", high=True, low=True)
        assert after == before

    def test_deterministic(self):
        program = "Copy InputHigh RegA; Or RegA InputLow OutputLow; LabelOf OutputLow RegC"
        first = run(create_reset_state(), program, high=True, low=False)
        second = run(create_reset_state(), program, high=True, low=False)
        assert first == second


class TestSkipNext:
    """Test hazard flag handling under both policies."""

    def test_secure_policy_never_arms(self):
        state = run(make_state(RegA=(True, Label.LOW)), "SkipNext RegA")
        assert state.skip_pending is False
        state = run(state, "Not Zero OutputLow")
        assert state.output_low == LabeledValue(True, Label.LOW)

    def test_vulnerable_policy_arms_on_true(self):
        state = run(make_state(RegA=(True, Label.LOW)), "SkipNext RegA", arm_skip=True)
        assert state.skip_pending is True

    def test_vulnerable_policy_false_operand(self):
        state = run(create_reset_state(), "SkipNext Zero", arm_skip=True)
        assert state.skip_pending is False

    def test_skipped_instruction_has_no_effect(self):
        """Only the immediately following instruction is skipped."""
        state = run(
            create_reset_state(),
            "SkipNext InputHigh; Not Zero OutputLow; Not Zero RegA",
            high=True,
            arm_skip=True
        )
        assert state.output_low == LOW_FALSE
        assert state.get_register("RegA") == LabeledValue(True, Label.LOW)
        assert state.skip_pending is False

    def test_skipped_skip_does_not_arm(self):
        state = run(
            create_reset_state(),
            "SkipNext InputHigh; SkipNext InputHigh",
            high=True,
            arm_skip=True
        )
        assert state.skip_pending is False


class TestMalformedOperands:
    """Test fail-fast behaviour on values outside the closed sets."""

    def test_bad_opcode(self):
        with pytest.raises(InvalidOperand):
            step(create_reset_state(), False, False, Instruction("Halt", RegisterName.REG_A))

    def test_bad_source(self):
        with pytest.raises(InvalidOperand):
            step(create_reset_state(), False, False, Instruction(Opcode.COPY, "RegA", dst=RegisterName.REG_B))

    def test_bad_second_source_binary(self):
        instr = Instruction(Opcode.AND, RegisterName.REG_A, "RegQ", RegisterName.REG_B)
        with pytest.raises(InvalidOperand):
            step(create_reset_state(), False, False, instr)

    def test_bad_destination(self):
        instr = Instruction(Opcode.NOT, RegisterName.REG_A, dst=7)
        with pytest.raises(InvalidOperand):
            step(create_reset_state(), False, False, instr)

    def test_not_an_instruction(self):
        with pytest.raises(InvalidOperand):
            step(create_reset_state(), False, False, "Copy RegA RegB")


class TestObservableOutputs:
    """Test the output exposure rule."""

    def test_high_low_output_reads_false(self):
        for value in (False, True):
            state = make_state(OutputLow=(value, Label.HIGH))
            assert observe_low(state) is False

    def test_low_output_exposed(self):
        assert observe_low(make_state(OutputLow=(True, Label.LOW))) is True
        assert observe_low(make_state(OutputLow=(False, Label.LOW))) is False

    def test_high_output_exposed_unconditionally(self):
        assert observe_high(make_state(OutputHigh=(True, Label.HIGH))) is True
        assert observe_high(make_state(OutputHigh=(True, Label.LOW))) is True

    def test_reset_forces_zero_state(self):
        state = make_state(RegA=(True, Label.HIGH), OutputLow=(True, Label.LOW), skip_pending=True)
        assert reset(state) == create_reset_state()


class TestLabeledCPU:
    """Test the stateful wrapper and its trace."""

    @pytest.fixture
    def cpu(self):
        cpu = LabeledCPU(arm_skip=True)
        cpu.reset()
        return cpu

    def test_trace_records_reset_and_steps(self, cpu):
        trace = cpu.run([
            (True, False, decode_instruction("Copy InputHigh RegA")),
            (False, True, decode_instruction("Copy InputLow OutputLow")),
        ])
        assert len(trace) == 3
        assert trace[0].instruction is None
        assert trace[1].post_state["registers"]["RegA"] == "1:High"
        assert trace[2].low_output is True
        assert cpu.get_cycle_count() == 2

    def test_trace_marks_skipped(self, cpu):
        cpu.step(True, False, decode_instruction("SkipNext InputHigh"))
        entry = cpu.step(False, False, decode_instruction("Not Zero OutputLow"))
        assert entry.skipped is True
        assert cpu.observe_low() is False

    def test_invalid_instruction_leaves_state(self, cpu):
        before = cpu.state
        with pytest.raises(InvalidOperand):
            cpu.step(False, False, Instruction("Bogus"))
        assert cpu.state == before
        assert cpu.get_cycle_count() == 0

    def test_summary(self, cpu):
        cpu.step(False, True, decode_instruction("Classify InputLow OutputLow"))
        summary = cpu.get_summary()
        assert summary["cycles"] == 1
        assert summary["registers"]["OutputLow"] == "1:High"
        assert summary["low_output"] is False

    def test_print_trace(self, cpu, capsys):
        cpu.step(True, False, decode_instruction("Copy InputHigh OutputHigh"))
        cpu.print_trace()
        out = capsys.readouterr().out
        assert "Copy InputHigh OutputHigh" in out
        assert "OutputHigh: 0:Low -> 1:High" in out
