"""
Configuration Loader (``taxflow_config.loader``).

Responsibility
--------------
Loads asset type YAML files and parses them into typed
``taxflow_config.schema`` dataclass instances. The single public entry
point for runtime use is ``taxflow_config.get_asset_types()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Missing required keys are never defaulted.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys in parsed dict  -> ``KeyError`` propagates.
* Structurally wrong document (e.g. a list where a mapping is expected)
  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from taxflow_config.schema import (
    AssetTypeDef,
    AttributeDef,
    EnumDef,
    EnumItemDef,
    TaxRuleDef,
)

_YAML_SUFFIXES = (".yaml", ".yml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _optional_text(value: Any) -> str | None:
    return None if value is None else str(value)


def parse_enum(data: dict[str, Any]) -> EnumDef:
    """Parse an EnumDef from a dict."""
    items = tuple(
        EnumItemDef(
            code=_text(item["code"]),
            label=_text(item["label"]),
            order=int(item.get("order", index)),
        )
        for index, item in enumerate(data.get("items") or [], start=1)
    )
    return EnumDef(key=_text(data["key"]), label=_text(data["label"]), items=items)


def parse_attribute(
    data: dict[str, Any], enums: dict[str, EnumDef] | None = None
) -> AttributeDef:
    """
    Parse an AttributeDef from a dict.

    An entry of the form ``{enum: SomeEnum}`` is an Enum attribute whose
    key and label are taken from the referenced enum (when it is known).
    Enum attributes default to required, other attributes to optional.
    """
    enum_ref = _optional_text(data.get("enum"))
    if enum_ref is not None:
        enum_def = (enums or {}).get(enum_ref)
        return AttributeDef(
            key=_text(data.get("key", enum_def.key if enum_def else enum_ref)),
            label=_text(data.get("label", enum_def.label if enum_def else enum_ref)),
            data_type=_text(data.get("data_type", "Enum")),
            required=bool(data.get("required", True)),
            regex_pattern=_optional_text(data.get("regex")),
            enum=enum_ref,
        )
    return AttributeDef(
        key=_text(data["key"]),
        label=_text(data["label"]),
        data_type=_text(data["data_type"]),
        required=bool(data.get("required", False)),
        regex_pattern=_optional_text(data.get("regex")),
    )


def parse_tax_rule(data: dict[str, Any]) -> TaxRuleDef:
    """Parse a TaxRuleDef from a dict."""
    return TaxRuleDef(
        key=_text(data["key"]),
        label=_text(data["label"]),
        expression=_text(data["expression"]).strip(),
        description=_optional_text(data.get("description")),
        enabled=bool(data.get("enabled", True)),
    )


def parse_asset_type(data: dict[str, Any], source: str | None = None) -> AssetTypeDef:
    """
    Parse an ``AssetTypeDef`` from a dict.

    Raises:
        KeyError: if required keys are missing.
    """
    enums = tuple(parse_enum(e) for e in data.get("enums") or [])
    by_key = {e.key: e for e in enums}
    return AssetTypeDef(
        name=_text(data["name"]),
        description=_optional_text(data.get("description")),
        enums=enums,
        attributes=tuple(
            parse_attribute(a, by_key) for a in data.get("attributes") or []
        ),
        tax_rules=tuple(parse_tax_rule(r) for r in data.get("tax_rules") or []),
        source=source,
    )


def load_asset_type_file(path: Path) -> tuple[AssetTypeDef, ...]:
    """Parse every asset type declared under ``asset_types`` in one file."""
    data = load_yaml_file(path)
    entries = data.get("asset_types") or []
    if not isinstance(entries, list):
        raise ValueError(f"{path}: 'asset_types' must be a list")
    return tuple(parse_asset_type(entry, source=str(path)) for entry in entries)


def load_directory(config_dir: Path) -> tuple[AssetTypeDef, ...]:
    """
    Load all asset type files in ``config_dir`` (sorted by file name).

    Raises:
        FileNotFoundError: if ``config_dir`` is not a directory.
    """
    if not config_dir.is_dir():
        raise FileNotFoundError(f"Configuration directory not found: {config_dir}")
    definitions: list[AssetTypeDef] = []
    for path in sorted(config_dir.iterdir()):
        if path.is_file() and path.suffix.lower() in _YAML_SUFFIXES:
            definitions.extend(load_asset_type_file(path))
    return tuple(definitions)
