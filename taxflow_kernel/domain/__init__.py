"""
Pure domain layer.

This module contains the data model, the schema validator, the formula
engine and the aggregates, with NO dependencies on:
- ORM / database
- Configuration files
- I/O (time comes from an injectable Clock)
"""

from taxflow_kernel.domain.asset_type import AssetType
from taxflow_kernel.domain.attribute_types import (
    AttributeDataType,
    parse_typed_value,
)
from taxflow_kernel.domain.attribute_validator import (
    validate_attribute,
    validate_attribute_set,
)
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from taxflow_kernel.domain.dtos import AttributeViolation, TaxLine
from taxflow_kernel.domain.formula import (
    CompiledFormula,
    FormulaASTError,
    bind_attributes,
    coerce_result,
    compile_formula,
    evaluate_formula,
    formula_variables,
    validate_formula,
)
from taxflow_kernel.domain.schemas import AttributeDefinition, EnumDefinition, EnumItem
from taxflow_kernel.domain.tax_rule import TaxRule
from taxflow_kernel.domain.taxable_asset import TaxableAsset

__all__ = [
    # Aggregates
    "AssetType",
    "TaxableAsset",
    # Attribute model
    "AttributeDataType",
    "ExtendedAttribute",
    "parse_typed_value",
    # Schema model
    "AttributeDefinition",
    "EnumDefinition",
    "EnumItem",
    # Rules
    "TaxRule",
    # Validation
    "AttributeViolation",
    "validate_attribute",
    "validate_attribute_set",
    # Formula engine
    "CompiledFormula",
    "FormulaASTError",
    "bind_attributes",
    "coerce_result",
    "compile_formula",
    "evaluate_formula",
    "formula_variables",
    "validate_formula",
    # Results
    "TaxLine",
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
