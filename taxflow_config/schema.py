"""
Asset type configuration schema.

Defines the human-authored source artifact for asset types. YAML files
are parsed into these types by the loader, checked by the validator, and
turned into ``AssetType`` aggregates by the builder.

Key distinction:
  AssetTypeDef = source artifact (human-authored, plain data)
  AssetType    = runtime aggregate (invariants enforced by the kernel)
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnumItemDef:
    """One allowed code of an enumeration."""

    code: str
    label: str
    order: int = 0


@dataclass(frozen=True)
class EnumDef:
    """A named set of allowed codes referenced by Enum-typed attributes."""

    key: str
    label: str
    items: tuple[EnumItemDef, ...] = ()


# ---------------------------------------------------------------------------
# Attributes and rules (declarative data, no executable logic)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttributeDef:
    """
    An expected attribute.

    For Enum attributes ``enum`` names an ``EnumDef`` of the same asset
    type; key and label default to the enum's own.
    """

    key: str
    label: str
    data_type: str  # AttributeDataType name: String, Number, ...
    required: bool = False
    regex_pattern: str | None = None
    enum: str | None = None


@dataclass(frozen=True)
class TaxRuleDef:
    """A tax rule; ``expression`` is formula text over attribute keys."""

    key: str
    label: str
    expression: str
    description: str | None = None
    enabled: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetTypeDef:
    """A complete asset type definition as authored in YAML."""

    name: str
    description: str | None = None
    enums: tuple[EnumDef, ...] = ()
    attributes: tuple[AttributeDef, ...] = ()
    tax_rules: tuple[TaxRuleDef, ...] = ()
    source: str | None = None  # file the definition was loaded from
