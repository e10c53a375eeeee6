"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable values produced by the kernel: ``AttributeViolation`` (one
    schema validation finding) and ``TaxLine`` (one computed tax amount).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# Violation codes (machine-readable; the message is for humans)
MISSING_REQUIRED_ATTRIBUTE = "MISSING_REQUIRED_ATTRIBUTE"
TYPE_MISMATCH = "TYPE_MISMATCH"
INVALID_VALUE = "INVALID_VALUE"
PATTERN_MISMATCH = "PATTERN_MISMATCH"
INVALID_PATTERN = "INVALID_PATTERN"
MISSING_ENUM_DEFINITION = "MISSING_ENUM_DEFINITION"
VALUE_NOT_ALLOWED = "VALUE_NOT_ALLOWED"


@dataclass(frozen=True)
class AttributeViolation:
    """
    A single schema validation finding.

    Contract:
        Carries a machine-readable code, a human-readable message, and the
        key of the expected attribute it concerns.

    Non-goals:
        - Does NOT raise exceptions -- it IS the error representation.
    """

    code: str
    message: str
    key: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class TaxLine:
    """Result of evaluating one tax rule: rule key, label and amount."""

    key: str
    label: str
    amount: Decimal

    def __post_init__(self) -> None:
        if self.key is None:
            object.__setattr__(self, "key", "")
        if self.label is None:
            object.__setattr__(self, "label", "")
        if not isinstance(self.amount, Decimal):
            raise TypeError(
                f"TaxLine amount must be Decimal, got {type(self.amount).__name__}"
            )
