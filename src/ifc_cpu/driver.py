"""PropertyEvaluator: drives the differential oracle over input sequences.

Modes:
    exhaustive: breadth-first over every input sequence on an alphabet,
        deduplicating reached state pairs. Closing the reachable set before
        the horizon proves the properties for that alphabet.
    random: seeded random streams. A clean run never proves anything and
        is reported as inconclusive.
    replay: a literal step sequence, optionally from a non-reset start.
    inductive: one step from every low-equivalent pair of states. A pass
        shows the invariant is preserved by every instruction, which covers
        every reachable pair, not only those within a horizon.

Failures carry a replayable counterexample (ordered StepInputs plus the
start pair) and the StepResult of the failing step.
"""

import itertools
import random as _random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .decode import BINARY_OPCODES, Instruction, Opcode, StepInput, decode_instruction, format_steps
from .errors import Inconclusive, PropertyViolation
from .oracle import LOW_EQUIVALENCE, DifferentialOracle, StepResult, evaluate_pair, step_pair
from .state import (
    MUTABLE_REGISTERS,
    Label,
    LabeledValue,
    MachineState,
    RegisterName,
    create_reset_state,
    make_state,
)


class Verdict(Enum):
    PASS = "pass"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


# (high_input1, high_input2, low_input)
ALL_INPUTS: Tuple[Tuple[bool, bool, bool], ...] = tuple(
    itertools.product((False, True), repeat=3)
)

# Pairs of values a single register may hold in two low-equivalent states
LOW_EQUIVALENT_VALUE_PAIRS: Tuple[Tuple[LabeledValue, LabeledValue], ...] = (
    (LabeledValue(False, Label.LOW), LabeledValue(False, Label.LOW)),
    (LabeledValue(True, Label.LOW), LabeledValue(True, Label.LOW)),
) + tuple(
    (LabeledValue(a, Label.HIGH), LabeledValue(b, Label.HIGH))
    for a, b in itertools.product((False, True), repeat=2)
)


def all_instructions() -> List[Instruction]:
    """Every distinct well-formed instruction.

    Unused operand fields are left at Zero so that instructions differing
    only in ignored fields are not enumerated twice.
    """
    registers = list(RegisterName)
    instructions = []
    for opcode in Opcode:
        if opcode is Opcode.SKIP_NEXT:
            instructions.extend(Instruction(opcode, src1=src) for src in registers)
        elif opcode in BINARY_OPCODES:
            instructions.extend(
                Instruction(opcode, src1=a, src2=b, dst=d)
                for a, b, d in itertools.product(registers, repeat=3)
            )
        else:
            instructions.extend(
                Instruction(opcode, src1=a, dst=d)
                for a, d in itertools.product(registers, repeat=2)
            )
    return instructions


# Literal exploit for the vulnerable SkipNext policy
IMPLICIT_FLOW_EXPLOIT: Tuple[StepInput, ...] = (
    StepInput(True, False, False, decode_instruction("SkipNext InputHigh")),
    StepInput(True, False, False, decode_instruction("Not Zero OutputLow")),
    StepInput(True, False, False, decode_instruction("Copy Zero OutputLow")),
)


def vulnerable_start_pair() -> Tuple[MachineState, MachineState]:
    """A register-plausible start pair that already differs on a Low register.

    Only RegB differs, and it is Low in both, so the pair is not
    low-equivalent; ``Copy RegB OutputLow`` then leaks it.
    """
    common = dict(
        RegA=(True, Label.LOW),
        RegC=(True, Label.HIGH),
        OutputHigh=(True, Label.LOW),
        OutputLow=(False, Label.LOW),
    )
    cpu1 = make_state(RegB=(True, Label.LOW), **common)
    cpu2 = make_state(RegB=(False, Label.LOW), **common)
    return cpu1, cpu2


@dataclass
class VerificationReport:
    """Verdict of one driver run.

    Attributes:
        verdict: PASS, FAIL or INCONCLUSIVE
        mode: Driver mode that produced the report
        steps_explored: Number of lockstep steps evaluated
        counterexample: Replayable step sequence (FAIL only)
        failure: StepResult of the failing step (FAIL only)
        start: Start pair of the counterexample (None means reset)
        message: Free-form explanation
    """
    verdict: Verdict
    mode: str
    steps_explored: int = 0
    counterexample: List[StepInput] = field(default_factory=list)
    failure: Optional[StepResult] = None
    start: Optional[Tuple[MachineState, MachineState]] = None
    message: str = ""

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    def format_counterexample(self) -> str:
        return format_steps(self.counterexample)

    def summary(self) -> str:
        lines = [
            f"VERDICT: {self.verdict.value.upper()} ({self.mode})",
            f"Steps explored: {self.steps_explored}",
        ]
        if self.message:
            lines.append(self.message)
        if self.start is not None:
            lines.append(f"Start cpu1: {self.start[0]}")
            lines.append(f"Start cpu2: {self.start[1]}")
        if self.counterexample:
            lines.append("Counterexample:")
            lines.extend(f"  {line}" for line in self.format_counterexample().split("\n"))
        if self.failure is not None:
            lines.append(self.failure.describe())
        return "\n".join(lines)

    def check(self) -> "VerificationReport":
        """Return self on PASS; raise otherwise.

        Raises:
            PropertyViolation: On FAIL
            Inconclusive: On INCONCLUSIVE
        """
        if self.verdict is Verdict.FAIL:
            broken = self.failure.broken_registers if self.failure else ()
            raise PropertyViolation(self.summary(), report=self, broken_registers=broken)
        if self.verdict is Verdict.INCONCLUSIVE:
            raise Inconclusive(self.summary(), report=self)
        return self


class PropertyEvaluator:
    """Runs the differential oracle over sequences and reports verdicts.

    Attributes:
        arm_skip: Whether SkipNext may arm the hazard flag
        horizon: Default step budget per sequence
        seed: Seed for random mode
    """

    DEFAULT_HORIZON = 20
    DEFAULT_RUNS = 200

    def __init__(
        self,
        arm_skip: bool = False,
        horizon: int = DEFAULT_HORIZON,
        seed: Optional[int] = None
    ):
        self.arm_skip = arm_skip
        self.horizon = horizon
        self.seed = seed

    # =========================================================================
    # Replay
    # =========================================================================

    def replay(
        self,
        steps: Iterable[StepInput],
        start: Optional[Tuple[MachineState, MachineState]] = None,
        check_start: bool = True,
        stop_on_failure: bool = True
    ) -> VerificationReport:
        """Replay a literal step sequence.

        Args:
            steps: Steps to apply in order
            start: Optional non-reset start pair
            check_start: Reject a start pair that is not low-equivalent
            stop_on_failure: Stop at the first failing step

        Returns:
            PASS if every step passes, else FAIL with the failing prefix
        """
        steps = list(steps)
        try:
            oracle = self._oracle(start, check_start)
        except PropertyViolation as e:
            return VerificationReport(
                verdict=Verdict.FAIL,
                mode="replay",
                start=start,
                message=str(e),
                failure=self._start_failure(start, e.broken_registers)
            )

        first_failure = None
        for index, step_input in enumerate(steps):
            result = oracle.apply(step_input)
            if not result.passed and first_failure is None:
                first_failure = (index, result)
                if stop_on_failure:
                    break

        if first_failure is None:
            return VerificationReport(
                verdict=Verdict.PASS,
                mode="replay",
                steps_explored=oracle.step_index,
                start=start
            )

        index, result = first_failure
        return VerificationReport(
            verdict=Verdict.FAIL,
            mode="replay",
            steps_explored=oracle.step_index,
            counterexample=steps[:index + 1],
            failure=result,
            start=start
        )

    # =========================================================================
    # Exhaustive
    # =========================================================================

    def exhaustive(
        self,
        instructions: Optional[Sequence[Instruction]] = None,
        inputs: Sequence[Tuple[bool, bool, bool]] = ALL_INPUTS,
        horizon: Optional[int] = None
    ) -> VerificationReport:
        """Breadth-first search of every sequence over an alphabet from reset.

        Args:
            instructions: Instruction alphabet (default: all_instructions())
            inputs: (high1, high2, low) combinations to try each step
            horizon: Maximum sequence length

        Returns:
            FAIL with a shortest counterexample, PASS if the reachable pair
            set closes within the horizon, INCONCLUSIVE otherwise
        """
        instructions = list(instructions) if instructions is not None else all_instructions()
        horizon = self.horizon if horizon is None else horizon
        alphabet = [
            StepInput(h1, h2, low, instr)
            for instr in instructions
            for h1, h2, low in inputs
        ]

        start = (create_reset_state(), create_reset_state())
        start_key = _pair_key(*start)
        parents: Dict[tuple, Optional[Tuple[tuple, StepInput]]] = {start_key: None}
        frontier = [start]
        explored = 0

        for depth in range(1, horizon + 1):
            next_frontier = []
            for cpu1, cpu2 in frontier:
                key = _pair_key(cpu1, cpu2)
                for step_input in alphabet:
                    new1, new2 = step_pair(cpu1, cpu2, step_input, self.arm_skip)
                    explored += 1
                    failed, _ = evaluate_pair(new1, new2)
                    if failed:
                        path = _path_to(parents, key) + [step_input]
                        return self._counterexample_report("exhaustive", path, None, explored)
                    new_key = _pair_key(new1, new2)
                    if new_key not in parents:
                        parents[new_key] = (key, step_input)
                        next_frontier.append((new1, new2))

            if not next_frontier:
                return VerificationReport(
                    verdict=Verdict.PASS,
                    mode="exhaustive",
                    steps_explored=explored,
                    message=(
                        f"Reachable set closed at depth {depth - 1}: "
                        f"{len(parents)} state pairs, {len(alphabet)} step inputs"
                    )
                )
            frontier = next_frontier

        return VerificationReport(
            verdict=Verdict.INCONCLUSIVE,
            mode="exhaustive",
            steps_explored=explored,
            message=(
                f"Horizon {horizon} exhausted with {len(frontier)} unexplored "
                f"state pairs ({len(parents)} reached)"
            )
        )

    # =========================================================================
    # Random
    # =========================================================================

    def random(
        self,
        runs: Optional[int] = None,
        instructions: Optional[Sequence[Instruction]] = None,
        horizon: Optional[int] = None
    ) -> VerificationReport:
        """Fuzz with seeded random streams from reset.

        Returns:
            FAIL with a shrunk counterexample, otherwise INCONCLUSIVE
        """
        runs = self.DEFAULT_RUNS if runs is None else runs
        horizon = self.horizon if horizon is None else horizon
        instructions = list(instructions) if instructions is not None else all_instructions()
        rng = _random.Random(self.seed)
        explored = 0

        for _ in range(runs):
            steps = [
                StepInput(
                    rng.random() < 0.5,
                    rng.random() < 0.5,
                    rng.random() < 0.5,
                    rng.choice(instructions)
                )
                for _ in range(horizon)
            ]
            index = self.first_failure(steps)
            if index is None:
                explored += horizon
                continue
            explored += index + 1
            return self._counterexample_report("random", self.shrink(steps), None, explored)

        return VerificationReport(
            verdict=Verdict.INCONCLUSIVE,
            mode="random",
            steps_explored=explored,
            message=f"No counterexample in {runs} runs of {horizon} steps (seed={self.seed})"
        )

    # =========================================================================
    # Inductive
    # =========================================================================

    def inductive(self, instructions: Optional[Sequence[Instruction]] = None) -> VerificationReport:
        """Check that one step preserves low-equivalence from any equivalent pair.

        For each instruction only the mutable registers it reads or writes
        are enumerated over LOW_EQUIVALENT_VALUE_PAIRS; the others are left
        at reset in both instances, since a step leaves them unchanged and
        therefore still equivalent. Likewise only the channels the
        instruction reads are varied.

        Returns:
            PASS (the invariant is inductive for the alphabet) or FAIL with
            the offending start pair and single step
        """
        instructions = list(instructions) if instructions is not None else all_instructions()
        explored = 0

        for instr in instructions:
            touched = _touched_registers(instr)
            inputs = _relevant_inputs(instr)
            for values in itertools.product(LOW_EQUIVALENT_VALUE_PAIRS, repeat=len(touched)):
                for skip in (False, True):
                    cpu1 = create_reset_state()
                    cpu2 = create_reset_state()
                    for reg, (a, b) in zip(touched, values):
                        cpu1 = cpu1.set_register(reg, a)
                        cpu2 = cpu2.set_register(reg, b)
                    cpu1 = cpu1.set_skip_pending(skip)
                    cpu2 = cpu2.set_skip_pending(skip)

                    for h1, h2, low in inputs:
                        step_input = StepInput(h1, h2, low, instr)
                        new1, new2 = step_pair(cpu1, cpu2, step_input, self.arm_skip)
                        explored += 1
                        failed, _ = evaluate_pair(new1, new2)
                        if failed:
                            return self._counterexample_report(
                                "inductive", [step_input], (cpu1, cpu2), explored
                            )

        return VerificationReport(
            verdict=Verdict.PASS,
            mode="inductive",
            steps_explored=explored,
            message=f"Invariant preserved by {len(instructions)} instructions"
        )

    # =========================================================================
    # Shrinking
    # =========================================================================

    def first_failure(
        self,
        steps: Sequence[StepInput],
        start: Optional[Tuple[MachineState, MachineState]] = None
    ) -> Optional[int]:
        """Index of the first failing step, or None if all pass."""
        if start is None:
            cpu1, cpu2 = create_reset_state(), create_reset_state()
        else:
            cpu1, cpu2 = start
        for index, step_input in enumerate(steps):
            cpu1, cpu2 = step_pair(cpu1, cpu2, step_input, self.arm_skip)
            failed, _ = evaluate_pair(cpu1, cpu2)
            if failed:
                return index
        return None

    def shrink(
        self,
        steps: Sequence[StepInput],
        start: Optional[Tuple[MachineState, MachineState]] = None
    ) -> List[StepInput]:
        """Reduce a failing sequence to a locally minimal failing one.

        Cuts to the failing prefix, then repeatedly removes single steps
        while the sequence still fails. Passing sequences are returned as-is.
        """
        index = self.first_failure(steps, start)
        if index is None:
            return list(steps)

        current = list(steps[:index + 1])
        changed = True
        while changed:
            changed = False
            for i in range(len(current)):
                candidate = current[:i] + current[i + 1:]
                found = self.first_failure(candidate, start)
                if found is not None:
                    current = candidate[:found + 1]
                    changed = True
                    break
        return current

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def _oracle(self, start, check_start: bool) -> DifferentialOracle:
        if start is None:
            return DifferentialOracle(arm_skip=self.arm_skip)
        return DifferentialOracle.from_states(
            start[0], start[1], arm_skip=self.arm_skip, check_start=check_start
        )

    def _start_failure(self, start, broken) -> StepResult:
        oracle = self._oracle(start, check_start=False)
        result = oracle.history[0]
        result.failed_predicates = (LOW_EQUIVALENCE,)
        result.broken_registers = tuple(broken)
        return result

    def _counterexample_report(self, mode, steps, start, explored) -> VerificationReport:
        # Re-run the literal sequence so the report is exactly what a replay shows
        oracle = self._oracle(start, check_start=False)
        result = None
        for step_input in steps:
            result = oracle.apply(step_input)
        return VerificationReport(
            verdict=Verdict.FAIL,
            mode=mode,
            steps_explored=explored,
            counterexample=list(steps),
            failure=result,
            start=start
        )


def _pair_key(cpu1: MachineState, cpu2: MachineState) -> tuple:
    return cpu1.key() + cpu2.key()


def _path_to(parents, key) -> List[StepInput]:
    path = []
    link = parents[key]
    while link is not None:
        key, step_input = link
        path.append(step_input)
        link = parents[key]
    path.reverse()
    return path


def _touched_registers(instr: Instruction) -> List[RegisterName]:
    names = list(instr.reads())
    if instr.writes:
        names.append(instr.dst)
    touched = []
    for name in names:
        if name in MUTABLE_REGISTERS and name not in touched:
            touched.append(name)
    return touched


def _relevant_inputs(instr: Instruction) -> List[Tuple[bool, bool, bool]]:
    reads = instr.reads()
    highs = ALL_INPUTS if RegisterName.INPUT_HIGH in reads else ((False, False, False),)
    inputs = []
    for h1, h2, _ in highs:
        lows = (False, True) if RegisterName.INPUT_LOW in reads else (False,)
        for low in lows:
            if (h1, h2, low) not in inputs:
                inputs.append((h1, h2, low))
    return inputs
