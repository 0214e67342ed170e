"""DifferentialOracle: lockstep noninterference checking for IFC-CPU.

Two machines share the low input and instruction streams but receive
independent high inputs. After every step (except the initial reset or
start step) two predicates are evaluated:

    low_equivalence:
        every mutable register that is Low in either instance is identical
        in both, and the (public) hazard flag agrees
    noninterference:
        the observable low outputs agree

Low-equivalence is the inductive invariant from which noninterference
follows; it is checked on every step so that a divergence is caught before
it becomes observable.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .cpu import observe_high, observe_low, step
from .decode import Instruction, StepInput
from .errors import PropertyViolation
from .state import MUTABLE_REGISTERS, MachineState, create_reset_state

LOW_EQUIVALENCE = "low_equivalence"
NONINTERFERENCE = "noninterference"
SKIP_PENDING = "skip_pending"


def low_equivalence_violations(cpu1: MachineState, cpu2: MachineState) -> List[str]:
    """Registers on which two states are not low-equivalent.

    Returns:
        Register text names (and ``skip_pending``), empty when equivalent
    """
    broken = []
    for reg in MUTABLE_REGISTERS:
        a = cpu1.registers[reg]
        b = cpu2.registers[reg]
        if (not a.is_high or not b.is_high) and a != b:
            broken.append(reg.value)
    if cpu1.skip_pending != cpu2.skip_pending:
        broken.append(SKIP_PENDING)
    return broken


def is_low_equivalent(cpu1: MachineState, cpu2: MachineState) -> bool:
    return not low_equivalence_violations(cpu1, cpu2)


def noninterference_holds(cpu1: MachineState, cpu2: MachineState) -> bool:
    return observe_low(cpu1) == observe_low(cpu2)


def evaluate_pair(cpu1: MachineState, cpu2: MachineState) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    """Evaluate both predicates on a pair of post-step states.

    Returns:
        (failed_predicates, broken_registers)
    """
    failed = []
    broken = low_equivalence_violations(cpu1, cpu2)
    if broken:
        failed.append(LOW_EQUIVALENCE)
    if not noninterference_holds(cpu1, cpu2):
        failed.append(NONINTERFERENCE)
    return tuple(failed), tuple(broken)


def step_pair(
    cpu1: MachineState,
    cpu2: MachineState,
    step_input: StepInput,
    arm_skip: bool = False
) -> Tuple[MachineState, MachineState]:
    """Advance both instances with shared low/instruction, split high inputs."""
    instr = step_input.instruction
    low = step_input.low_input
    return (
        step(cpu1, step_input.high_input1, low, instr, arm_skip=arm_skip),
        step(cpu2, step_input.high_input2, low, instr, arm_skip=arm_skip),
    )


@dataclass
class StepResult:
    """Outcome of one lockstep step.

    Attributes:
        step: Step index (0 is the reset or start step)
        inputs: Step inputs (None for step 0)
        cpu1: Post-step snapshot of instance 1
        cpu2: Post-step snapshot of instance 2
        low_output1: Observable low output of instance 1
        low_output2: Observable low output of instance 2
        high_output1: High output of instance 1
        high_output2: High output of instance 2
        failed_predicates: Names of predicates that failed
        broken_registers: Registers that broke low-equivalence
        checked: Whether predicates were evaluated on this step
    """
    step: int
    inputs: Optional[StepInput]
    cpu1: dict
    cpu2: dict
    low_output1: bool
    low_output2: bool
    high_output1: bool
    high_output2: bool
    failed_predicates: Tuple[str, ...] = ()
    broken_registers: Tuple[str, ...] = ()
    checked: bool = True

    @property
    def passed(self) -> bool:
        return not self.failed_predicates

    def describe(self) -> str:
        """One-paragraph human-readable description."""
        what = "START" if self.inputs is None else str(self.inputs)
        lines = [f"[Step {self.step}] {what}"]
        if not self.checked:
            lines.append("  (predicates not evaluated)")
        elif self.passed:
            lines.append("  OK")
        else:
            lines.append(f"  FAILED: {', '.join(self.failed_predicates)}")
            if self.broken_registers:
                lines.append(f"  Broken registers: {', '.join(self.broken_registers)}")
        lines.append(f"  cpu1: {self.cpu1['registers']} skip={int(self.cpu1['skip_pending'])}")
        lines.append(f"  cpu2: {self.cpu2['registers']} skip={int(self.cpu2['skip_pending'])}")
        lines.append(f"  low outputs: {int(self.low_output1)} / {int(self.low_output2)}")
        return "\n".join(lines)


class DifferentialOracle:
    """Two lockstep machines plus the security predicates.

    Attributes:
        arm_skip: Whether SkipNext may arm the hazard flag
        cpu1: State of instance 1
        cpu2: State of instance 2
        history: StepResult for every step taken, starting with step 0
    """

    def __init__(self, arm_skip: bool = False):
        self.arm_skip = arm_skip
        self.cpu1: MachineState = create_reset_state()
        self.cpu2: MachineState = create_reset_state()
        self.history: List[StepResult] = []
        self.reset()

    @classmethod
    def from_states(
        cls,
        cpu1: MachineState,
        cpu2: MachineState,
        arm_skip: bool = False,
        check_start: bool = True
    ) -> "DifferentialOracle":
        """Start a pair at arbitrary states instead of reset.

        Args:
            cpu1: Starting state of instance 1
            cpu2: Starting state of instance 2
            arm_skip: Use the vulnerable SkipNext policy
            check_start: Reject a starting pair that is not low-equivalent

        Raises:
            PropertyViolation: If check_start and the pair is not low-equivalent
        """
        if check_start:
            broken = low_equivalence_violations(cpu1, cpu2)
            if broken:
                raise PropertyViolation(
                    f"Start pair is not low-equivalent: {', '.join(broken)}",
                    broken_registers=broken
                )

        oracle = cls(arm_skip=arm_skip)
        oracle.cpu1 = cpu1
        oracle.cpu2 = cpu2
        oracle.history = [oracle._result(0, None, (), (), checked=False)]
        return oracle

    @property
    def step_index(self) -> int:
        return len(self.history) - 1

    def reset(self) -> StepResult:
        """Reset both instances; step 0 is never checked."""
        self.cpu1 = create_reset_state()
        self.cpu2 = create_reset_state()
        result = self._result(0, None, (), (), checked=False)
        self.history = [result]
        return result

    def run_step(
        self,
        high_input1: bool,
        high_input2: bool,
        low_input: bool,
        instr: Instruction
    ) -> StepResult:
        """Advance both instances one step and evaluate the predicates.

        Raises:
            InvalidOperand: On a malformed instruction; the pair is unchanged
        """
        return self.apply(StepInput(bool(high_input1), bool(high_input2), bool(low_input), instr))

    def apply(self, step_input: StepInput) -> StepResult:
        """Advance both instances by one StepInput."""
        self.cpu1, self.cpu2 = step_pair(self.cpu1, self.cpu2, step_input, self.arm_skip)
        failed, broken = evaluate_pair(self.cpu1, self.cpu2)
        result = self._result(self.step_index + 1, step_input, failed, broken)
        self.history.append(result)
        return result

    def failures(self) -> List[StepResult]:
        return [r for r in self.history if not r.passed]

    def _result(self, index, step_input, failed, broken, checked: bool = True) -> StepResult:
        return StepResult(
            step=index,
            inputs=step_input,
            cpu1=self.cpu1.snapshot(),
            cpu2=self.cpu2.snapshot(),
            low_output1=observe_low(self.cpu1),
            low_output2=observe_low(self.cpu2),
            high_output1=observe_high(self.cpu1),
            high_output2=observe_high(self.cpu2),
            failed_predicates=failed,
            broken_registers=broken,
            checked=checked
        )

    def print_trace(self) -> None:
        """Print the lockstep history in human-readable format."""
        print("=" * 70)
        print("IFC-CPU LOCKSTEP TRACE")
        print("=" * 70)
        for result in self.history:
            print()
            print(result.describe())
