"""
taxflow_config -- single public entrypoint for asset type configuration.

Responsibility:
    Provides the way to obtain configured asset types at runtime through
    ``get_asset_types()`` / ``get_asset_type()``. Which attributes and tax
    rules exist for a jurisdiction is decided here, in YAML, never in the
    kernel.

Architecture position:
    Configuration -- YAML-driven, build-time validation. This package sits
    above ``taxflow_kernel``. The kernel MUST NEVER import from
    ``taxflow_config``.

Invariants enforced:
    - Build-time validation: every definition must pass
      ``validate_configuration`` before any ``AssetType`` is built.
    - Deterministic loading: files are read in name order, so the same
      directory always yields the same asset types in the same order.

Failure modes:
    - ``FileNotFoundError`` -- configuration directory does not exist.
    - ``yaml.YAMLError`` / ``KeyError`` -- malformed YAML documents.
    - ``ConfigValidationError`` -- one or more validation errors, all
      reported together.
    - ``LookupError`` -- ``get_asset_type`` for an unknown name.

Audit relevance:
    Every successful load emits a ``TAXFLOW_CONFIG_TRACE`` log entry
    containing the directory, asset type names, and attribute and rule
    counts.
"""

from __future__ import annotations

import logging
from pathlib import Path

from taxflow_config.builder import build_asset_types
from taxflow_config.loader import load_directory
from taxflow_config.validator import (
    ConfigValidationError,
    ConfigValidationResult,
    validate_configuration,
)
from taxflow_kernel.domain.asset_type import AssetType

_logger = logging.getLogger("taxflow_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "ConfigValidationError",
    "ConfigValidationResult",
    "get_asset_type",
    "get_asset_types",
    "validate_configuration",
]


def get_asset_types(config_dir: Path | None = None) -> tuple[AssetType, ...]:
    """Load, validate and build every configured asset type.

    Args:
        config_dir: Directory of asset type YAML files. Defaults to
            taxflow_config/sets/.

    Returns:
        Fresh ``AssetType`` aggregates; callers own and may mutate them.

    Raises:
        FileNotFoundError: If the directory does not exist.
        ConfigValidationError: If validation reports any error.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR

    definitions = load_directory(sets_dir)

    validation = validate_configuration(definitions)
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})
    if not validation.is_valid:
        _logger.error(
            "config_validation_failed",
            extra={"config_dir": str(sets_dir), "error_count": len(validation.errors)},
        )
        raise ConfigValidationError(validation.errors)

    asset_types = build_asset_types(definitions)

    _logger.info(
        "TAXFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "TAXFLOW_CONFIG_TRACE",
            "config_dir": str(sets_dir),
            "asset_types": [a.name for a in asset_types],
            "attribute_count": sum(len(a.expected_attributes) for a in asset_types),
            "tax_rule_count": sum(len(a.tax_rules) for a in asset_types),
            "warning_count": len(validation.warnings),
        },
    )
    return asset_types


def get_asset_type(name: str, config_dir: Path | None = None) -> AssetType:
    """Return the configured asset type called ``name`` (case-insensitive).

    Raises:
        LookupError: If no asset type has that name.
        ConfigValidationError: If the configuration is invalid.
    """
    wanted = (name or "").strip().casefold()
    for asset_type in get_asset_types(config_dir):
        if asset_type.name.casefold() == wanted:
            return asset_type
    raise LookupError(f"No asset type named {name!r} in configuration")
