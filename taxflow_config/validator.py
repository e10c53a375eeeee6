"""
Configuration Validator (``taxflow_config.validator``).

Responsibility
--------------
Validates parsed ``AssetTypeDef`` instances at build time, before any
``AssetType`` aggregate is built from them.

Invariants enforced
-------------------
* Asset type name uniqueness (case-insensitive) across all files.
* Enum key, attribute key and rule key uniqueness within an asset type.
* Enum item codes unique within an enum.
* Every attribute names a known data type; Enum attributes reference a
  declared, non-empty enum.
* Regex patterns compile.
* Rule expressions pass the restricted formula validator.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``)  -> asset types
  MUST NOT be built.
* Validation warnings (``ConfigValidationResult.warnings``)  -> asset
  types may be built but should be reviewed (e.g. a formula references a
  name that no attribute declares).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from taxflow_config.schema import AssetTypeDef
from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.formula import (
    AMOUNT_VARIABLE,
    formula_variables,
    normalize_name,
    validate_formula,
)


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block building but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


class ConfigValidationError(ValueError):
    """Raised when asset type configuration fails validation."""

    code: str = "CONFIG_VALIDATION_FAILED"

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


def validate_configuration(definitions: Sequence[AssetTypeDef]) -> ConfigValidationResult:
    """
    Validate a set of asset type definitions.

    Postconditions:
        - Returns a ``ConfigValidationResult`` with errors and warnings.
        - Definitions with errors MUST NOT be built.
    """
    result = ConfigValidationResult()

    _validate_name_uniqueness(definitions, result)
    for definition in definitions:
        _validate_enums(definition, result)
        _validate_attributes(definition, result)
        _validate_tax_rules(definition, result)

    return result


def _duplicates(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    dupes: list[str] = []
    for value in values:
        normalized = value.strip().casefold()
        if normalized in seen and value not in dupes:
            dupes.append(value)
        seen.add(normalized)
    return dupes


def _validate_name_uniqueness(
    definitions: Sequence[AssetTypeDef], result: ConfigValidationResult
) -> None:
    """Check that asset type names are present and unique."""
    for definition in definitions:
        if not definition.name.strip():
            result.add_error(f"Asset type with blank name in {definition.source}")
    for name in _duplicates(d.name for d in definitions if d.name.strip()):
        result.add_error(f"Duplicate asset type: '{name}' appears more than once")


def _validate_enums(definition: AssetTypeDef, result: ConfigValidationResult) -> None:
    """Check enum keys and item codes."""
    for key in _duplicates(e.key for e in definition.enums):
        result.add_error(f"Asset type '{definition.name}': duplicate enum '{key}'")
    for enum in definition.enums:
        if not enum.key.strip() or not enum.label.strip():
            result.add_error(
                f"Asset type '{definition.name}': enum '{enum.key}' needs a key and a label"
            )
        if any(not item.code.strip() for item in enum.items):
            result.add_error(
                f"Asset type '{definition.name}': enum '{enum.key}' has an item with a blank code"
            )
        for code in _duplicates(i.code for i in enum.items if i.code.strip()):
            result.add_error(
                f"Asset type '{definition.name}': enum '{enum.key}' "
                f"has duplicate code '{code}'"
            )


def _validate_attributes(definition: AssetTypeDef, result: ConfigValidationResult) -> None:
    """Check attribute keys, data types, enum references and patterns."""
    prefix = f"Asset type '{definition.name}'"
    enums = {e.key.strip().casefold(): e for e in definition.enums}

    for key in _duplicates(a.key for a in definition.attributes):
        result.add_error(f"{prefix}: duplicate attribute '{key}'")

    for attribute in definition.attributes:
        if not attribute.key.strip() or not attribute.label.strip():
            result.add_error(f"{prefix}: attribute '{attribute.key}' needs a key and a label")

        try:
            data_type = AttributeDataType.from_name(attribute.data_type)
        except ValueError:
            result.add_error(
                f"{prefix}: attribute '{attribute.key}' has unknown data type "
                f"'{attribute.data_type}'"
            )
            continue

        if data_type == AttributeDataType.ENUM:
            if attribute.enum is None:
                result.add_error(
                    f"{prefix}: Enum attribute '{attribute.key}' does not reference an enum"
                )
            else:
                enum = enums.get(attribute.enum.strip().casefold())
                if enum is None:
                    result.add_error(
                        f"{prefix}: attribute '{attribute.key}' references "
                        f"unknown enum '{attribute.enum}'"
                    )
                elif not enum.items:
                    result.add_error(f"{prefix}: enum '{enum.key}' has no items")
        elif attribute.enum is not None:
            result.add_error(
                f"{prefix}: attribute '{attribute.key}' references enum "
                f"'{attribute.enum}' but has data type {data_type}"
            )

        if attribute.regex_pattern:
            try:
                re.compile(attribute.regex_pattern)
            except re.error as e:
                result.add_error(
                    f"{prefix}: attribute '{attribute.key}' has invalid pattern "
                    f"{attribute.regex_pattern!r} ({e.msg})"
                )


def _validate_tax_rules(definition: AssetTypeDef, result: ConfigValidationResult) -> None:
    """Check rule keys and validate expressions against the formula allow-list."""
    prefix = f"Asset type '{definition.name}'"
    declared = {normalize_name(a.key) for a in definition.attributes}
    declared.add(AMOUNT_VARIABLE)

    for key in _duplicates(r.key for r in definition.tax_rules):
        result.add_error(f"{prefix}: duplicate tax rule '{key}'")

    for rule in definition.tax_rules:
        if not rule.key.strip() or not rule.label.strip():
            result.add_error(f"{prefix}: tax rule '{rule.key}' needs a key and a label")

        errors = validate_formula(rule.expression)
        for err in errors:
            result.add_error(
                f"{prefix}: tax rule '{rule.key}' expression: {err.message} "
                f"(position {err.position})"
            )
        if errors:
            continue

        undeclared = sorted(formula_variables(rule.expression) - declared)
        if undeclared:
            result.add_warning(
                f"{prefix}: tax rule '{rule.key}' references undeclared "
                f"attribute(s): {', '.join(undeclared)}"
            )
