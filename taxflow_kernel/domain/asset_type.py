"""
AssetType -- aggregate root declaring an attribute schema and tax rules.

Responsibility:
    Owns the expected-attribute definitions and the tax rules of one
    category of taxable asset. Validates attribute sets against the schema
    and evaluates individual rules against attribute sets.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - name is non-blank and trimmed
    - no two expected attributes share a key (case-insensitive)
    - no two tax rules share a key (case-insensitive)
    - collections are only changed through add/remove methods; callers see
      tuple snapshots

Failure modes:
    - ValueError on blank name / key, or missing definition / rule
    - DuplicateAttributeDefinitionError, DuplicateTaxRuleError on key reuse
    - FormulaError subclasses from evaluate_tax_rule

Concurrency:
    Not synchronized. Mutations of one instance must be serialized by the
    caller; read operations work on a snapshot taken at call time.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID, uuid4

from taxflow_kernel.domain.attribute_validator import validate_attribute_set
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.domain.dtos import AttributeViolation
from taxflow_kernel.domain.formula import bind_attributes, coerce_result, evaluate_formula
from taxflow_kernel.domain.schemas import AttributeDefinition
from taxflow_kernel.domain.tax_rule import TaxRule
from taxflow_kernel.exceptions import (
    DuplicateAttributeDefinitionError,
    DuplicateTaxRuleError,
    FormulaError,
)
from taxflow_kernel.logging_config import get_logger

logger = get_logger("domain.asset_type")


def _same_key(left: str, right: str) -> bool:
    return left.strip().casefold() == right.strip().casefold()


class AssetType:
    """Aggregate root for one category of taxable asset."""

    def __init__(self, name: str, description: str | None = None, id: UUID | None = None):
        self.id: UUID = id or uuid4()
        self._name = ""
        self._description: str | None = None
        self._expected_attributes: list[AttributeDefinition] = []
        self._tax_rules: list[TaxRule] = []
        self._set_name(name)
        self.update_description(description)

    @classmethod
    def create(
        cls,
        name: str,
        description: str | None = None,
        id: UUID | None = None,
    ) -> AssetType:
        """
        Create an asset type.

        Raises:
            ValueError: blank name.
        """
        return cls(name, description, id)

    def __repr__(self) -> str:
        return (
            f"AssetType(name={self._name!r}, attributes={len(self._expected_attributes)}, "
            f"rules={len(self._tax_rules)})"
        )

    # -- identity --

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str | None:
        return self._description

    def _set_name(self, name: str) -> None:
        if not name or not name.strip():
            raise ValueError("Asset type name must not be blank")
        self._name = name.strip()

    def rename(self, new_name: str) -> None:
        previous = self._name
        self._set_name(new_name)
        logger.info(
            "asset_type_renamed",
            extra={"asset_type_id": str(self.id), "old_name": previous, "new_name": self._name},
        )

    def update_description(self, description: str | None) -> None:
        """Set the description; None or blank clears it."""
        self._description = description.strip() if description and description.strip() else None

    # -- expected attributes --

    @property
    def expected_attributes(self) -> tuple[AttributeDefinition, ...]:
        return tuple(self._expected_attributes)

    def add_expected_attribute(self, definition: AttributeDefinition) -> AssetType:
        """
        Declare an expected attribute.

        Raises:
            ValueError: definition is None or its key is blank.
            DuplicateAttributeDefinitionError: key already declared.
        """
        if definition is None:
            raise ValueError("Attribute definition is required")
        if not definition.key or not definition.key.strip():
            raise ValueError("Attribute definition key must not be blank")
        if self.has_expected_attribute(definition.key):
            raise DuplicateAttributeDefinitionError(self._name, definition.key)
        self._expected_attributes.append(definition)
        return self

    def remove_expected_attribute(self, key_or_definition: str | AttributeDefinition) -> bool:
        """Remove by key (case-insensitive). Returns whether anything was removed."""
        if key_or_definition is None:
            raise ValueError("Attribute key or definition is required")
        key = (
            key_or_definition.key
            if isinstance(key_or_definition, AttributeDefinition)
            else key_or_definition
        )
        if not key or not key.strip():
            raise ValueError("Attribute key must not be blank")
        before = len(self._expected_attributes)
        self._expected_attributes = [
            d for d in self._expected_attributes if not _same_key(d.key, key)
        ]
        return len(self._expected_attributes) < before

    def has_expected_attribute(self, key: str | None) -> bool:
        return self.get_expected_attribute(key) is not None

    def get_expected_attribute(self, key: str | None) -> AttributeDefinition | None:
        if not key or not key.strip():
            return None
        return next((d for d in self._expected_attributes if _same_key(d.key, key)), None)

    # -- tax rules --

    @property
    def tax_rules(self) -> tuple[TaxRule, ...]:
        return tuple(self._tax_rules)

    def add_tax_rule(self, rule: TaxRule) -> AssetType:
        """
        Attach a tax rule.

        Raises:
            ValueError: rule is None or its key is blank.
            DuplicateTaxRuleError: key already declared.
        """
        if rule is None:
            raise ValueError("Tax rule is required")
        if not rule.key or not rule.key.strip():
            raise ValueError("Tax rule key must not be blank")
        if self.has_tax_rule(rule.key):
            raise DuplicateTaxRuleError(self._name, rule.key)
        self._tax_rules.append(rule)
        return self

    def remove_tax_rule(self, key: str) -> bool:
        if not key or not key.strip():
            raise ValueError("Tax rule key must not be blank")
        before = len(self._tax_rules)
        self._tax_rules = [r for r in self._tax_rules if not _same_key(r.key, key)]
        return len(self._tax_rules) < before

    def has_tax_rule(self, key: str | None) -> bool:
        return self.get_tax_rule(key) is not None

    def get_tax_rule(self, key: str | None) -> TaxRule | None:
        if not key or not key.strip():
            return None
        return next((r for r in self._tax_rules if _same_key(r.key, key)), None)

    def enabled_tax_rules(self) -> tuple[TaxRule, ...]:
        return tuple(r for r in self._tax_rules if r.enabled)

    # -- validation --

    def collect_violations(
        self, attributes: Iterable[ExtendedAttribute]
    ) -> list[AttributeViolation]:
        """Structured schema violations; empty when the attributes are valid."""
        if attributes is None:
            raise ValueError("attributes is required")
        return validate_attribute_set(self.expected_attributes, attributes)

    def validate_attributes(self, attributes: Iterable[ExtendedAttribute]) -> list[str]:
        """Violation messages for ``attributes``; an empty list means valid."""
        return [v.message for v in self.collect_violations(attributes)]

    # -- evaluation --

    def evaluate_tax_rule(
        self,
        key: str,
        attributes: Iterable[ExtendedAttribute],
        amount: Decimal | int | float | None = None,
    ) -> Decimal | None:
        """
        Evaluate one tax rule against attributes.

        Returns None when the rule is unknown, disabled, or yields a
        non-numeric value.

        Raises:
            ValueError: blank key or attributes is None.
            FormulaError: malformed formula, unbound variable, runtime fault.
        """
        if not key or not key.strip():
            raise ValueError("Tax rule key must not be blank")
        if attributes is None:
            raise ValueError("attributes is required")

        rule = self.get_tax_rule(key)
        if rule is None or not rule.enabled:
            return None

        bindings = bind_attributes(
            attributes,
            amount,
            declared_keys=[d.key for d in self.expected_attributes],
        )
        try:
            raw = evaluate_formula(rule.expression, bindings)
        except FormulaError as e:
            e.rule_key = rule.key
            logger.warning(
                "tax_rule_evaluation_failed",
                extra={
                    "asset_type": self._name,
                    "rule_key": rule.key,
                    "error_code": e.code,
                    "error": str(e),
                },
            )
            raise

        result = coerce_result(raw)
        logger.debug(
            "tax_rule_evaluated",
            extra={
                "asset_type": self._name,
                "rule_key": rule.key,
                "result": result,
                "non_numeric": result is None,
            },
        )
        return result
