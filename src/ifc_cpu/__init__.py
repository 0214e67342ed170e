"""IFC-CPU: Labeled-Register Processor with Differential Noninterference Checking.

This package implements a small boolean processor where every register
carries a security label (Low or High), together with a differential
harness that runs two instances in lockstep and checks that High inputs
never influence the Low output.

Core Thesis:
    Label propagation alone is not enough: control effects such as
    conditional skipping leak High data implicitly. A lockstep pair with
    independent High inputs, plus an inductive low-equivalence invariant,
    makes the guarantee checkable.

Architecture:
    INPUTS -> LOOKUP -> REGISTRY -> WRITE-BACK -> STATE      (x2, lockstep)
                           |                        |
                      [Verified]             [Low-equivalence]
                      Primitives             [Noninterference]
                                                    |
                                           DRIVER -> VerificationReport

Modules:
    state: Label-value model and MachineState
    decode: Opcodes, instructions and step literals
    registry: Verified result primitives per opcode
    cpu: Pure transition function and LabeledCPU
    oracle: DifferentialOracle and security predicates
    driver: PropertyEvaluator (exhaustive, random, replay, inductive)
"""

__version__ = "0.1.0"
__author__ = "IFC-CPU Project"

from .errors import Inconclusive, InvalidOperand, PropertyViolation
from .state import Label, LabeledValue, MachineState, RegisterName
from .decode import Instruction, Opcode, StepInput
from .registry import OpcodeRegistry
from .cpu import LabeledCPU, step
from .oracle import DifferentialOracle, StepResult
from .driver import PropertyEvaluator, VerificationReport, Verdict

__all__ = [
    "Inconclusive",
    "InvalidOperand",
    "PropertyViolation",
    "Label",
    "LabeledValue",
    "MachineState",
    "RegisterName",
    "Instruction",
    "Opcode",
    "StepInput",
    "OpcodeRegistry",
    "LabeledCPU",
    "step",
    "DifferentialOracle",
    "StepResult",
    "PropertyEvaluator",
    "VerificationReport",
    "Verdict",
]
