"""
Asset type builder (``taxflow_config.builder``).

Turns validated ``AssetTypeDef`` source artifacts into ``AssetType``
aggregates. Callers validate first (``validate_configuration``); the
kernel still enforces its own invariants here, so an unvalidated
definition fails with the kernel's exceptions rather than producing a
broken aggregate.
"""

from __future__ import annotations

from collections.abc import Sequence

from taxflow_config.schema import AssetTypeDef, AttributeDef, EnumDef
from taxflow_kernel.domain.asset_type import AssetType
from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.schemas import AttributeDefinition, EnumDefinition, EnumItem
from taxflow_kernel.domain.tax_rule import TaxRule


def build_enum(definition: EnumDef) -> EnumDefinition:
    """
    Raises:
        DuplicateEnumCodeError: two items share a code.
    """
    return EnumDefinition(
        key=definition.key.strip(),
        label=definition.label.strip(),
        items=tuple(
            EnumItem(code=item.code.strip(), label=item.label, order=item.order)
            for item in definition.items
        ),
    )


def build_attribute(
    definition: AttributeDef, enums: dict[str, EnumDefinition]
) -> AttributeDefinition:
    data_type = AttributeDataType.from_name(definition.data_type)

    if data_type == AttributeDataType.ENUM and definition.enum is not None:
        enum = enums[definition.enum.strip().casefold()]
        # Explicit key/label in YAML override the ones taken from the enum
        attribute = AttributeDefinition.from_enum(
            enum,
            is_required=definition.required,
            key=definition.key,
            label=definition.label,
        )
        if definition.regex_pattern:
            attribute.set_regex_pattern(definition.regex_pattern)
        return attribute

    return AttributeDefinition.create(
        definition.key,
        definition.label,
        data_type,
        is_required=definition.required,
        regex_pattern=definition.regex_pattern,
    )


def build_asset_type(definition: AssetTypeDef) -> AssetType:
    """
    Build one ``AssetType`` from its definition.

    Raises:
        ValueError: blank names or keys, unknown data type.
        KeyError: an attribute references an undeclared enum.
        DuplicateEnumCodeError, DuplicateAttributeDefinitionError,
        DuplicateTaxRuleError: kernel invariants.
    """
    enums = {e.key.strip().casefold(): build_enum(e) for e in definition.enums}

    asset_type = AssetType.create(definition.name, definition.description)
    for attribute in definition.attributes:
        asset_type.add_expected_attribute(build_attribute(attribute, enums))
    for rule in definition.tax_rules:
        asset_type.add_tax_rule(
            TaxRule.create(
                rule.key,
                rule.label,
                rule.expression,
                description=rule.description,
                enabled=rule.enabled,
            )
        )
    return asset_type


def build_asset_types(definitions: Sequence[AssetTypeDef]) -> tuple[AssetType, ...]:
    return tuple(build_asset_type(d) for d in definitions)
