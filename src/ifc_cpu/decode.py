"""Instruction set and literal step decoding for IFC-CPU.

This module defines the closed opcode set, the Instruction record and the
textual literal form used for replayable counterexamples.

Instruction literal:
    Copy RegB OutputLow         unary:   <op> <src> <dst>
    And RegA InputLow RegC      binary:  <op> <src1> <src2> <dst>
    SkipNext InputHigh          skip:    <op> <src>

Step literal (one lockstep step, shared instruction):
    <high1> <high2> <low> <instruction>
    1 0 0 SkipNext InputHigh

Instructions are always public; decoding never consults machine state.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List, Tuple

from .errors import InvalidOperand
from .state import RegisterName, to_register_name


class Opcode(Enum):
    """Closed set of operations."""
    COPY = "Copy"
    NOT = "Not"
    AND = "And"
    OR = "Or"
    CLASSIFY = "Classify"
    LABEL_OF = "LabelOf"
    SKIP_NEXT = "SkipNext"


BINARY_OPCODES: FrozenSet[Opcode] = frozenset({Opcode.AND, Opcode.OR})

WRITING_OPCODES: FrozenSet[Opcode] = frozenset({
    Opcode.COPY,
    Opcode.NOT,
    Opcode.AND,
    Opcode.OR,
    Opcode.CLASSIFY,
    Opcode.LABEL_OF,
})


def to_opcode(name) -> Opcode:
    """Resolve an opcode, failing fast outside the closed set."""
    if isinstance(name, Opcode):
        return name
    if isinstance(name, str):
        wanted = name.strip().lower()
        for op in Opcode:
            if op.value.lower() == wanted:
                return op
    raise InvalidOperand(name, "opcode")


@dataclass(frozen=True)
class Instruction:
    """One public instruction.

    Attributes:
        opcode: Operation to perform
        src1: First source register
        src2: Second source register (And/Or only)
        dst: Destination register (ignored by SkipNext)
    """
    opcode: Opcode
    src1: RegisterName = RegisterName.ZERO
    src2: RegisterName = RegisterName.ZERO
    dst: RegisterName = RegisterName.ZERO

    @property
    def is_binary(self) -> bool:
        return self.opcode in BINARY_OPCODES

    @property
    def writes(self) -> bool:
        return self.opcode in WRITING_OPCODES

    def reads(self) -> Tuple[RegisterName, ...]:
        """Registers whose contents influence the result."""
        if self.is_binary:
            return (self.src1, self.src2)
        return (self.src1,)

    def __str__(self) -> str:
        return encode_instruction(self)


@dataclass(frozen=True)
class StepInput:
    """Inputs for one lockstep step of the differential pair.

    Attributes:
        high_input1: High channel bit for instance 1
        high_input2: High channel bit for instance 2
        low_input: Shared low channel bit
        instruction: Shared instruction
    """
    high_input1: bool
    high_input2: bool
    low_input: bool
    instruction: Instruction

    def __str__(self) -> str:
        return encode_step(self)


def encode_instruction(instr: Instruction) -> str:
    """Render an instruction as its literal text."""
    op = instr.opcode.value
    if instr.opcode is Opcode.SKIP_NEXT:
        return f"{op} {instr.src1.value}"
    if instr.is_binary:
        return f"{op} {instr.src1.value} {instr.src2.value} {instr.dst.value}"
    return f"{op} {instr.src1.value} {instr.dst.value}"


def decode_instruction(text: str) -> Instruction:
    """Decode an instruction literal.

    Args:
        text: Instruction text, e.g. "Copy RegB OutputLow"

    Returns:
        Decoded Instruction

    Raises:
        InvalidOperand: If the opcode, a register or the operand count is bad
    """
    # Normalize: commas and runs of whitespace become single spaces
    instr = re.sub(r'[\s,]+', ' ', text).strip()
    if not instr:
        raise InvalidOperand(text, "instruction")

    tokens = instr.split(" ")
    opcode = to_opcode(tokens[0])
    operands = [to_register_name(tok) for tok in tokens[1:]]

    if opcode is Opcode.SKIP_NEXT:
        expected = 1
    elif opcode in BINARY_OPCODES:
        expected = 3
    else:
        expected = 2

    if len(operands) != expected:
        raise InvalidOperand(text, f"{opcode.value} operand list")

    if opcode is Opcode.SKIP_NEXT:
        return Instruction(opcode, src1=operands[0])
    if opcode in BINARY_OPCODES:
        return Instruction(opcode, src1=operands[0], src2=operands[1], dst=operands[2])
    return Instruction(opcode, src1=operands[0], dst=operands[1])


def _parse_bit(token: str) -> bool:
    token = token.strip().lower()
    if token in ("1", "true", "t"):
        return True
    if token in ("0", "false", "f"):
        return False
    raise InvalidOperand(token, "input bit")


def encode_step(step: StepInput) -> str:
    """Render a lockstep step as its literal text."""
    bits = " ".join(str(int(b)) for b in (step.high_input1, step.high_input2, step.low_input))
    return f"{bits} {encode_instruction(step.instruction)}"


def decode_step(text: str) -> StepInput:
    """Decode one step literal: ``<high1> <high2> <low> <instruction>``."""
    parts = text.strip().split(None, 3)
    if len(parts) < 4:
        raise InvalidOperand(text, "step")
    high1, high2, low = (_parse_bit(p) for p in parts[:3])
    return StepInput(high1, high2, low, decode_instruction(parts[3]))


def parse_steps(source: str) -> List[StepInput]:
    """Parse a multi-line step program.

    Handles:
        - Comments (starting with ; or #)
        - Blank lines

    Args:
        source: Step literal source, one step per line

    Returns:
        List of StepInput in order

    Raises:
        InvalidOperand: On the first malformed line, with its line number
    """
    steps = []

    for lineno, line in enumerate(source.split("\n"), start=1):
        # Remove comments
        line = re.sub(r'[;#].*$', '', line).strip()

        if not line:
            continue

        try:
            steps.append(decode_step(line))
        except InvalidOperand as e:
            raise InvalidOperand(f"line {lineno}: {line} ({e})", "step") from e

    return steps


def format_steps(steps) -> str:
    """Render steps one per line; inverse of parse_steps."""
    return "\n".join(encode_step(step) for step in steps)
