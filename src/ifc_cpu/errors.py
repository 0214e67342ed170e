"""Error taxonomy for IFC-CPU.

InvalidOperand:
    A register name or opcode outside the closed enumerations reached the
    engine. Contract violation, raised immediately.
PropertyViolation:
    Low-equivalence or noninterference failed. Carries the register list
    and, when raised from a report, the full replayable counterexample.
Inconclusive:
    A bounded search ended without proof or disproof.
"""

from typing import Optional, Sequence


class InvalidOperand(ValueError):
    """Raised when an operand is outside the closed register/opcode sets."""

    def __init__(self, operand, role: str = "operand"):
        self.operand = operand
        self.role = role
        super().__init__(f"Invalid {role}: {operand!r}")


class PropertyViolation(Exception):
    """Raised when a security predicate fails."""

    def __init__(
        self,
        message: str,
        report=None,
        broken_registers: Sequence[str] = ()
    ):
        super().__init__(message)
        self.report = report
        self.broken_registers = tuple(broken_registers)


class Inconclusive(Exception):
    """Raised when a bounded search can neither prove nor refute."""

    def __init__(self, message: str, report: Optional[object] = None):
        super().__init__(message)
        self.report = report
