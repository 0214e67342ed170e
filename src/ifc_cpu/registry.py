"""OpcodeRegistry: Verified result primitives for IFC-CPU.

Each opcode maps to a frozen primitive that computes the labeled result of
an instruction from its resolved operands.

Registry Keys:
    Copy: result = src1 (value and label)
    Not: result = {!src1.value, src1.label}
    And: result = {src1.value & src2.value, join(labels)}
    Or: result = {src1.value | src2.value, join(labels)}
    Classify: result = {src1.value, High}
    LabelOf: result = {src1.label == High, Low}
    SkipNext: no result (hazard handling lives in the engine)

Each primitive is a pure function: (src1, src2) -> Optional[LabeledValue]
"""

from typing import Callable, Dict, Optional

from .decode import Opcode
from .errors import InvalidOperand
from .state import LabeledValue, classify, join, label_of

Primitive = Callable[[LabeledValue, LabeledValue], Optional[LabeledValue]]


class OpcodeRegistry:
    """Verified registry of result primitives.

    The registry is frozen after initialization to ensure
    no runtime modifications can occur.

    Attributes:
        _primitives: Dictionary mapping opcodes to handler functions
        _frozen: Whether the registry is locked against modifications
    """

    def __init__(self):
        """Initialize registry with all primitives."""
        self._primitives: Dict[Opcode, Primitive] = {}
        self._frozen = False
        self._register_all_primitives()
        self.freeze()

    def _register_all_primitives(self) -> None:
        # Data movement
        self.register(Opcode.COPY, self._op_copy)

        # Logic
        self.register(Opcode.NOT, self._op_not)
        self.register(Opcode.AND, self._op_and)
        self.register(Opcode.OR, self._op_or)

        # Label operations
        self.register(Opcode.CLASSIFY, self._op_classify)
        self.register(Opcode.LABEL_OF, self._op_label_of)

        # Control
        self.register(Opcode.SKIP_NEXT, self._op_skip_next)

    def register(self, key: Opcode, handler: Primitive) -> None:
        """Register a primitive.

        Raises:
            RuntimeError: If registry is frozen
            ValueError: If key already registered
        """
        if self._frozen:
            raise RuntimeError("Cannot register primitives: registry is frozen")
        if key in self._primitives:
            raise ValueError(f"Primitive already registered: {key}")
        self._primitives[key] = handler

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

    def get_valid_keys(self) -> set:
        return set(self._primitives.keys())

    def execute(self, key: Opcode, src1: LabeledValue, src2: LabeledValue) -> Optional[LabeledValue]:
        """Compute the result of a registered primitive.

        Args:
            key: Opcode
            src1: Resolved first operand
            src2: Resolved second operand

        Returns:
            Labeled result, or None for opcodes that write nothing

        Raises:
            InvalidOperand: If key is not a registered opcode
        """
        handler = self._primitives.get(key) if isinstance(key, Opcode) else None
        if handler is None:
            raise InvalidOperand(key, "opcode")
        return handler(src1, src2)

    # =========================================================================
    # Primitives
    # =========================================================================

    def _op_copy(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        return src1

    def _op_not(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        return LabeledValue(not src1.value, src1.label)

    def _op_and(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        return LabeledValue(src1.value and src2.value, join(src1.label, src2.label))

    def _op_or(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        return LabeledValue(src1.value or src2.value, join(src1.label, src2.label))

    def _op_classify(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        """Classify is the only operation that raises a label."""
        return classify(src1)

    def _op_label_of(self, src1: LabeledValue, src2: LabeledValue) -> LabeledValue:
        return label_of(src1)

    def _op_skip_next(self, src1: LabeledValue, src2: LabeledValue) -> None:
        return None


# Singleton registry instance
_registry: Optional[OpcodeRegistry] = None


def get_registry() -> OpcodeRegistry:
    """Get the singleton opcode registry instance."""
    global _registry
    if _registry is None:
        _registry = OpcodeRegistry()
    return _registry
