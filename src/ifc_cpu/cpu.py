"""CPU transition engine for IFC-CPU.

This module implements one labeled-register machine:
    INPUTS -> LOOKUP -> REGISTRY -> WRITE-BACK / HAZARD -> STATE

``step`` is a pure function over MachineState. ``LabeledCPU`` wraps it with
an owned state and an execution trace for inspection.

Hazard policy:
    A SkipNext whose operand is true would arm skipping of the following
    instruction. Arming on a High operand is an implicit flow, so the
    default policy never arms (the flag resolves to false). ``arm_skip=True``
    selects the vulnerable policy for regression and counterexample work.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .decode import Instruction, Opcode
from .errors import InvalidOperand
from .registry import get_registry
from .state import (
    LOW_FALSE,
    MUTABLE_REGISTERS,
    Label,
    LabeledValue,
    MachineState,
    RegisterName,
    create_reset_state,
)


def lookup(state: MachineState, name: RegisterName, high_input: bool, low_input: bool) -> LabeledValue:
    """Resolve a register against stored state and the current channel inputs.

    Args:
        state: Current machine state
        name: Any of the eight register names
        high_input: High channel bit for this step
        low_input: Low channel bit for this step

    Returns:
        Labeled operand value

    Raises:
        InvalidOperand: If name is outside the closed enumeration
    """
    if name is RegisterName.ZERO:
        return LOW_FALSE
    if name is RegisterName.INPUT_HIGH:
        return LabeledValue(bool(high_input), Label.HIGH)
    if name is RegisterName.INPUT_LOW:
        return LabeledValue(bool(low_input), Label.LOW)
    if isinstance(name, RegisterName):
        return state.registers[name]
    raise InvalidOperand(name, "register")


def _check_instruction(instr: Instruction) -> None:
    # Only the operands an opcode actually uses are checked
    if not isinstance(instr, Instruction):
        raise InvalidOperand(instr, "instruction")
    if not isinstance(instr.opcode, Opcode):
        raise InvalidOperand(instr.opcode, "opcode")
    used = [instr.src1]
    if instr.is_binary:
        used.append(instr.src2)
    if instr.writes:
        used.append(instr.dst)
    for name in used:
        if not isinstance(name, RegisterName):
            raise InvalidOperand(name, "register")


def step(
    state: MachineState,
    high_input: bool,
    low_input: bool,
    instr: Instruction,
    arm_skip: bool = False
) -> MachineState:
    """Advance one machine by one instruction.

    Args:
        state: Current machine state (not modified)
        high_input: High channel bit for this step
        low_input: Low channel bit for this step
        instr: Instruction to execute
        arm_skip: Use the vulnerable SkipNext policy

    Returns:
        Next MachineState

    Raises:
        InvalidOperand: If the instruction uses an opcode or register
            outside the closed enumerations
    """
    _check_instruction(instr)

    src1 = lookup(state, instr.src1, high_input, low_input)
    src2 = lookup(state, instr.src2, high_input, low_input) if instr.is_binary else LOW_FALSE
    result = get_registry().execute(instr.opcode, src1, src2)

    # A skipped instruction neither writes nor arms; it only consumes the flag
    if state.skip_pending:
        return state.set_skip_pending(False)

    if instr.opcode is Opcode.SKIP_NEXT:
        return state.set_skip_pending(bool(arm_skip and src1.value))

    # Read-only destinations are not stored, so writing them is a no-op
    if instr.dst in MUTABLE_REGISTERS:
        return state.set_register(instr.dst, result)
    return state


def reset(state: Optional[MachineState] = None) -> MachineState:
    """Force the canonical reset state, independent of the prior state."""
    return create_reset_state()


def observe_low(state: MachineState) -> bool:
    """Externally observable low output.

    A High-labeled OutputLow is never exposed; it reads as false.
    """
    output = state.registers[RegisterName.OUTPUT_LOW]
    if output.label is Label.HIGH:
        return False
    return output.value


def observe_high(state: MachineState) -> bool:
    """Externally observable high output (exposed unconditionally)."""
    return state.registers[RegisterName.OUTPUT_HIGH].value


@dataclass
class ExecutionTraceEntry:
    """Single entry in the execution trace.

    Attributes:
        cycle: Cycle number (1-indexed; 0 is reset)
        instruction: Executed instruction (None for reset)
        high_input: High channel bit
        low_input: Low channel bit
        pre_state: Snapshot before execution
        post_state: Snapshot after execution
        low_output: Observable low output after execution
        high_output: Observable high output after execution
        skipped: Whether the instruction was suppressed by the hazard flag
    """
    cycle: int
    instruction: Optional[Instruction]
    high_input: bool
    low_input: bool
    pre_state: dict
    post_state: dict
    low_output: bool
    high_output: bool
    skipped: bool = False


class LabeledCPU:
    """A single labeled-register machine with an execution trace.

    Attributes:
        arm_skip: Whether SkipNext may arm the hazard flag
        state: Current machine state
        trace: List of execution trace entries
    """

    def __init__(self, arm_skip: bool = False, state: Optional[MachineState] = None):
        self.arm_skip = arm_skip
        self.state: MachineState = state if state is not None else create_reset_state()
        self.trace: List[ExecutionTraceEntry] = []
        self._cycle = 0

    def reset(self) -> ExecutionTraceEntry:
        """Apply reset and start a fresh trace."""
        pre_state = self.state.snapshot()
        self.state = reset(self.state)
        self._cycle = 0
        entry = ExecutionTraceEntry(
            cycle=0,
            instruction=None,
            high_input=False,
            low_input=False,
            pre_state=pre_state,
            post_state=self.state.snapshot(),
            low_output=observe_low(self.state),
            high_output=observe_high(self.state)
        )
        self.trace = [entry]
        return entry

    def step(self, high_input: bool, low_input: bool, instr: Instruction) -> ExecutionTraceEntry:
        """Execute one instruction and record it.

        Raises:
            InvalidOperand: On a malformed instruction; state is unchanged
        """
        pre = self.state
        self.state = step(pre, high_input, low_input, instr, arm_skip=self.arm_skip)
        self._cycle += 1

        entry = ExecutionTraceEntry(
            cycle=self._cycle,
            instruction=instr,
            high_input=bool(high_input),
            low_input=bool(low_input),
            pre_state=pre.snapshot(),
            post_state=self.state.snapshot(),
            low_output=observe_low(self.state),
            high_output=observe_high(self.state),
            skipped=pre.skip_pending
        )
        self.trace.append(entry)
        return entry

    def run(self, steps: Iterable[Tuple[bool, bool, Instruction]]) -> List[ExecutionTraceEntry]:
        """Run a sequence of (high_input, low_input, instruction) steps.

        Returns:
            Complete execution trace
        """
        for high_input, low_input, instr in steps:
            self.step(high_input, low_input, instr)
        return self.trace

    def get_register(self, reg) -> LabeledValue:
        return self.state.get_register(reg)

    def dump_registers(self) -> Dict[str, LabeledValue]:
        return self.state.dump_registers()

    def observe_low(self) -> bool:
        return observe_low(self.state)

    def observe_high(self) -> bool:
        return observe_high(self.state)

    def get_cycle_count(self) -> int:
        return self._cycle

    def print_trace(self) -> None:
        """Print execution trace in human-readable format."""
        print("=" * 70)
        print("IFC-CPU EXECUTION TRACE")
        print("=" * 70)

        for entry in self.trace:
            label = "RESET" if entry.instruction is None else str(entry.instruction)
            status = " (skipped)" if entry.skipped else ""
            print(f"\n[Cycle {entry.cycle}] {label}{status}")
            print(f"  Inputs: high={int(entry.high_input)} low={int(entry.low_input)}")

            pre_regs = entry.pre_state["registers"]
            post_regs = entry.post_state["registers"]
            changes = [
                f"{reg}: {pre_regs[reg]} -> {post_regs[reg]}"
                for reg in pre_regs
                if pre_regs[reg] != post_regs[reg]
            ]
            if changes:
                print(f"  Changes: {', '.join(changes)}")
            print(f"  Outputs: high={int(entry.high_output)} low={int(entry.low_output)}")

        print("\n" + "=" * 70)
        print("FINAL STATE")
        print("=" * 70)
        print(f"  {self.state}")

    def get_summary(self) -> Dict:
        """Get execution summary."""
        return {
            "cycles": self._cycle,
            "registers": {k: str(v) for k, v in self.dump_registers().items()},
            "skip_pending": self.state.skip_pending,
            "low_output": self.observe_low(),
            "high_output": self.observe_high(),
            "trace_length": len(self.trace),
        }
