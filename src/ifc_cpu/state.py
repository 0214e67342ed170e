"""Label-value model and machine state for IFC-CPU.

This module defines the primitive labeled value, the two-point security
lattice, the closed register name set and the machine state that the
transition engine advances.

Lattice:
    Low < High, join = High if either operand is High.
    The only legal label increase is the explicit Classify upgrade; no
    operation lowers a High label.

State Components:
    - Registers: OutputHigh, OutputLow, RegA, RegB, RegC (labeled booleans)
    - skip_pending: hazard flag armed by SkipNext

Zero, InputHigh and InputLow are read-only and are rebuilt from the channel
inputs every step, so they are not stored here.

All state mutations return new state objects.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple

from .errors import InvalidOperand


class Label(Enum):
    """Security classification attached to every value."""
    LOW = "Low"
    HIGH = "High"

    @property
    def is_high(self) -> bool:
        return self is Label.HIGH


class RegisterName(Enum):
    """Closed set of register names."""
    ZERO = "Zero"
    INPUT_HIGH = "InputHigh"
    INPUT_LOW = "InputLow"
    OUTPUT_HIGH = "OutputHigh"
    OUTPUT_LOW = "OutputLow"
    REG_A = "RegA"
    REG_B = "RegB"
    REG_C = "RegC"


READ_ONLY_REGISTERS: Tuple[RegisterName, ...] = (
    RegisterName.ZERO,
    RegisterName.INPUT_HIGH,
    RegisterName.INPUT_LOW,
)

MUTABLE_REGISTERS: Tuple[RegisterName, ...] = (
    RegisterName.OUTPUT_HIGH,
    RegisterName.OUTPUT_LOW,
    RegisterName.REG_A,
    RegisterName.REG_B,
    RegisterName.REG_C,
)


@dataclass(frozen=True)
class LabeledValue:
    """A boolean value paired with its security label.

    Attributes:
        value: The data bit
        label: Security label of the bit
    """
    value: bool = False
    label: Label = Label.LOW

    @property
    def is_high(self) -> bool:
        return self.label is Label.HIGH

    def __str__(self) -> str:
        return f"{int(self.value)}:{self.label.value}"


LOW_FALSE = LabeledValue(False, Label.LOW)


def join(a: Label, b: Label) -> Label:
    """Least upper bound of two labels."""
    if a is Label.HIGH or b is Label.HIGH:
        return Label.HIGH
    return Label.LOW


def classify(operand: LabeledValue) -> LabeledValue:
    """Upgrade a value to High, keeping its bit."""
    return LabeledValue(operand.value, Label.HIGH)


def label_of(operand: LabeledValue) -> LabeledValue:
    """Expose whether a value is classified, as a Low bit.

    Only the label is revealed, never the underlying value.
    """
    return LabeledValue(operand.label is Label.HIGH, Label.LOW)


def to_register_name(name) -> RegisterName:
    """Resolve a register name, failing fast outside the closed set.

    Args:
        name: RegisterName or its textual form (case insensitive)

    Returns:
        The matching RegisterName

    Raises:
        InvalidOperand: If name is not one of the eight registers
    """
    if isinstance(name, RegisterName):
        return name
    if isinstance(name, str):
        wanted = name.strip().lower()
        for reg in RegisterName:
            if reg.value.lower() == wanted:
                return reg
    raise InvalidOperand(name, "register")


def _reset_registers() -> Dict[RegisterName, LabeledValue]:
    return {reg: LOW_FALSE for reg in MUTABLE_REGISTERS}


@dataclass
class MachineState:
    """State of one labeled-register machine.

    Attributes:
        registers: Mapping of the five mutable registers to labeled values
        skip_pending: Whether the next instruction is to be skipped
    """
    registers: Dict[RegisterName, LabeledValue] = field(default_factory=_reset_registers)
    skip_pending: bool = False

    def snapshot(self) -> dict:
        """Create a plain-dict snapshot for traces and reports.

        Returns:
            Dictionary keyed by register text name, plus skip_pending
        """
        regs = {reg.value: str(self.registers[reg]) for reg in MUTABLE_REGISTERS}
        return {
            "registers": regs,
            "skip_pending": self.skip_pending,
        }

    def key(self) -> tuple:
        """Hashable identity of the state, used for deduplication."""
        return tuple(self.registers[reg] for reg in MUTABLE_REGISTERS) + (self.skip_pending,)

    def validate(self) -> bool:
        """Validate state integrity.

        Checks:
            - Exactly the five mutable registers are present
            - Every register holds a LabeledValue with a bool and a Label
            - skip_pending is a bool

        Returns:
            True if state is valid, False otherwise
        """
        if set(self.registers.keys()) != set(MUTABLE_REGISTERS):
            return False

        for value in self.registers.values():
            if not isinstance(value, LabeledValue):
                return False
            if not isinstance(value.value, bool) or not isinstance(value.label, Label):
                return False

        return isinstance(self.skip_pending, bool)

    def get_register(self, reg) -> LabeledValue:
        """Get the labeled value of a mutable register.

        Args:
            reg: Register name (RegisterName or text, case insensitive)

        Returns:
            Stored labeled value

        Raises:
            InvalidOperand: If reg is not a mutable register
        """
        name = to_register_name(reg)
        if name not in self.registers:
            raise InvalidOperand(reg, "mutable register")
        return self.registers[name]

    def set_register(self, reg, value: LabeledValue) -> "MachineState":
        """Create new state with one mutable register replaced.

        Args:
            reg: Register name
            value: New labeled value

        Returns:
            New MachineState with updated register

        Raises:
            InvalidOperand: If reg is not a mutable register
        """
        name = to_register_name(reg)
        if name not in self.registers:
            raise InvalidOperand(reg, "mutable register")

        new_registers = dict(self.registers)
        new_registers[name] = value
        return MachineState(registers=new_registers, skip_pending=self.skip_pending)

    def set_skip_pending(self, pending: bool) -> "MachineState":
        """Create new state with the hazard flag set to pending."""
        return MachineState(registers=dict(self.registers), skip_pending=pending)

    def dump_registers(self) -> Dict[str, LabeledValue]:
        """Get a copy of all mutable registers keyed by text name."""
        return {reg.value: self.registers[reg] for reg in MUTABLE_REGISTERS}

    @property
    def output_low(self) -> LabeledValue:
        return self.registers[RegisterName.OUTPUT_LOW]

    @property
    def output_high(self) -> LabeledValue:
        return self.registers[RegisterName.OUTPUT_HIGH]

    def __str__(self) -> str:
        regs = " ".join(f"{reg.value}={self.registers[reg]}" for reg in MUTABLE_REGISTERS)
        return f"{regs} {'SKIP' if self.skip_pending else ''}".rstrip()


def create_reset_state() -> MachineState:
    """Create the canonical reset state.

    Returns:
        MachineState with every mutable register {false, Low} and no skip
    """
    return MachineState(registers=_reset_registers(), skip_pending=False)


def make_state(skip_pending: bool = False, **registers) -> MachineState:
    """Build a state from keyword registers, the rest at reset.

    Keys are register text names (``RegA=LabeledValue(True, Label.LOW)``).
    Tuples ``(value, label)`` are accepted as shorthand.
    """
    state = create_reset_state()
    for name, value in registers.items():
        if isinstance(value, tuple):
            value = LabeledValue(bool(value[0]), value[1])
        state = state.set_register(name, value)
    return state.set_skip_pending(skip_pending)


def all_labeled_values() -> List[LabeledValue]:
    """Every LabeledValue, in a stable order."""
    return [LabeledValue(v, l) for l in Label for v in (False, True)]
