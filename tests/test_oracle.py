"""Tests for the differential oracle."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from ifc_cpu.decode import Instruction, StepInput, decode_instruction
from ifc_cpu.driver import IMPLICIT_FLOW_EXPLOIT, vulnerable_start_pair
from ifc_cpu.errors import InvalidOperand, PropertyViolation
from ifc_cpu.oracle import (
    LOW_EQUIVALENCE,
    NONINTERFERENCE,
    SKIP_PENDING,
    DifferentialOracle,
    evaluate_pair,
    is_low_equivalent,
    low_equivalence_violations,
    noninterference_holds,
)
from ifc_cpu.state import Label, create_reset_state, make_state


class TestPredicates:
    """Test the pure pair predicates."""

    def test_reset_pair_equivalent(self):
        assert is_low_equivalent(create_reset_state(), create_reset_state())

    def test_high_registers_may_differ(self):
        cpu1 = make_state(RegA=(True, Label.HIGH))
        cpu2 = make_state(RegA=(False, Label.HIGH))
        assert low_equivalence_violations(cpu1, cpu2) == []

    def test_low_in_either_must_match(self):
        cpu1 = make_state(RegA=(True, Label.HIGH))
        cpu2 = make_state(RegA=(True, Label.LOW))
        assert low_equivalence_violations(cpu1, cpu2) == ["RegA"]

    def test_skip_flag_is_public(self):
        cpu1 = create_reset_state().set_skip_pending(True)
        assert low_equivalence_violations(cpu1, create_reset_state()) == [SKIP_PENDING]

    def test_noninterference_masks_high_output(self):
        cpu1 = make_state(OutputLow=(True, Label.HIGH))
        cpu2 = make_state(OutputLow=(False, Label.LOW))
        assert noninterference_holds(cpu1, cpu2)

    def test_evaluate_pair(self):
        cpu1 = make_state(OutputLow=(True, Label.LOW))
        cpu2 = make_state(OutputLow=(False, Label.LOW))
        failed, broken = evaluate_pair(cpu1, cpu2)
        assert failed == (LOW_EQUIVALENCE, NONINTERFERENCE)
        assert broken == ("OutputLow",)


class TestLockstep:
    """Test stepping the pair from reset."""

    @pytest.fixture
    def oracle(self):
        return DifferentialOracle()

    def test_reset_step_not_checked(self, oracle):
        assert oracle.step_index == 0
        assert oracle.history[0].checked is False
        assert oracle.history[0].passed

    def test_high_input_does_not_reach_low_output(self, oracle):
        results = [
            oracle.run_step(True, False, True, decode_instruction("Copy InputHigh RegA")),
            oracle.run_step(True, False, True, decode_instruction("Or RegA InputLow OutputLow")),
            oracle.run_step(True, False, True, decode_instruction("Not OutputLow OutputLow")),
        ]
        assert all(r.passed for r in results)
        assert results[-1].low_output1 is False
        assert results[-1].low_output2 is False
        assert oracle.cpu1.output_low.label is Label.HIGH

    def test_high_output_may_differ(self, oracle):
        result = oracle.run_step(True, False, False, decode_instruction("Copy InputHigh OutputHigh"))
        assert result.passed
        assert result.high_output1 is True
        assert result.high_output2 is False

    def test_label_of_high_input_is_equal(self, oracle):
        result = oracle.run_step(True, False, False, decode_instruction("LabelOf InputHigh OutputLow"))
        assert result.passed
        assert result.low_output1 is True and result.low_output2 is True

    def test_step_indices(self, oracle):
        for _ in range(3):
            oracle.run_step(False, True, False, decode_instruction("Not Zero RegA"))
        assert [r.step for r in oracle.history] == [0, 1, 2, 3]

    def test_invalid_instruction_aborts_step(self, oracle):
        with pytest.raises(InvalidOperand):
            oracle.run_step(False, False, False, Instruction("Nope"))
        assert oracle.step_index == 0

    def test_reset_clears_history(self, oracle):
        oracle.run_step(True, True, True, decode_instruction("Copy InputLow RegA"))
        oracle.reset()
        assert oracle.step_index == 0
        assert oracle.cpu1 == create_reset_state()

    def test_deterministic(self):
        """The same inputs always produce the same history."""
        def history():
            oracle = DifferentialOracle(arm_skip=True)
            for step_input in IMPLICIT_FLOW_EXPLOIT:
                oracle.apply(step_input)
            return oracle.history

        assert history() == history()


class TestImplicitFlow:
    """Test the SkipNext implicit-flow regression."""

    def run_exploit(self, arm_skip):
        oracle = DifferentialOracle(arm_skip=arm_skip)
        return [oracle.apply(step_input) for step_input in IMPLICIT_FLOW_EXPLOIT]

    def test_vulnerable_policy_diverges(self):
        results = self.run_exploit(arm_skip=True)

        # Hazard flag diverges first; invariant catches it before any leak
        assert results[0].failed_predicates == (LOW_EQUIVALENCE,)
        assert results[0].broken_registers == (SKIP_PENDING,)

        # Instance 1 skipped the Not, instance 2 did not
        assert NONINTERFERENCE in results[1].failed_predicates
        assert results[1].low_output1 is False
        assert results[1].low_output2 is True
        assert "OutputLow" in results[1].broken_registers

    def test_secure_policy_passes(self):
        results = self.run_exploit(arm_skip=False)
        assert all(r.passed for r in results)
        assert [r.low_output1 for r in results] == [False, True, False]
        assert [r.low_output2 for r in results] == [False, True, False]


class TestNonResetStart:
    """Test starting the pair from supplied states."""

    def test_vulnerable_start_rejected(self):
        cpu1, cpu2 = vulnerable_start_pair()
        with pytest.raises(PropertyViolation) as excinfo:
            DifferentialOracle.from_states(cpu1, cpu2)
        assert excinfo.value.broken_registers == ("RegB",)

    def test_vulnerable_start_detected_when_run(self):
        cpu1, cpu2 = vulnerable_start_pair()
        oracle = DifferentialOracle.from_states(cpu1, cpu2, check_start=False)
        assert oracle.history[0].checked is False

        result = oracle.run_step(False, True, False, decode_instruction("Copy RegB OutputLow"))
        assert not result.passed
        assert result.failed_predicates == (LOW_EQUIVALENCE, NONINTERFERENCE)
        assert result.broken_registers == ("OutputLow", "RegB")
        assert result.low_output1 is True
        assert result.low_output2 is False

    def test_equivalent_start_accepted(self):
        cpu1 = make_state(RegC=(True, Label.HIGH), RegA=(True, Label.LOW))
        cpu2 = make_state(RegC=(False, Label.HIGH), RegA=(True, Label.LOW))
        oracle = DifferentialOracle.from_states(cpu1, cpu2)
        result = oracle.run_step(False, False, False, decode_instruction("And RegA RegC OutputLow"))
        assert result.passed
        assert result.low_output1 is False and result.low_output2 is False

    def test_describe_names_register(self):
        cpu1, cpu2 = vulnerable_start_pair()
        oracle = DifferentialOracle.from_states(cpu1, cpu2, check_start=False)
        result = oracle.apply(StepInput(False, False, False, decode_instruction("Copy RegB OutputLow")))
        text = result.describe()
        assert "FAILED: low_equivalence, noninterference" in text
        assert "RegB" in text
        assert "low outputs: 1 / 0" in text
