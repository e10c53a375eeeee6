"""
Pytest fixtures for the taxflow test suite.

Provides:
- Structured logging configured for every test
- A deterministic clock
- Attribute / asset type builders shared across test modules
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from taxflow_kernel.domain.asset_type import AssetType
from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.domain.clock import DeterministicClock
from taxflow_kernel.domain.schemas import AttributeDefinition, EnumDefinition, EnumItem
from taxflow_kernel.domain.tax_rule import TaxRule
from taxflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

FIXED_NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture taxflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, real_estate):
            real_estate.validate_attributes([])
            logs = captured_logs()
            assert any(r["message"] == "attribute_validation_failed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("taxflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def make_attribute(clock):
    """Factory for ExtendedAttribute valid from the deterministic clock."""

    def _make(
        key: str,
        value: str | None,
        data_type: AttributeDataType = AttributeDataType.STRING,
        is_required: bool = False,
        **kwargs,
    ) -> ExtendedAttribute:
        kwargs.setdefault("clock", clock)
        return ExtendedAttribute.create(key, value, data_type, is_required, **kwargs)

    return _make


@pytest.fixture
def real_estate_type_enum() -> EnumDefinition:
    return EnumDefinition(
        key="RealEstateType",
        label="Type de Propriété",
        items=(
            EnumItem(code="PB", label="Propriété Bâtie", order=1),
            EnumItem(code="PNB", label="Propriété Non Bâtie", order=2),
        ),
    )


@pytest.fixture
def real_estate_usage_enum() -> EnumDefinition:
    return EnumDefinition(
        key="RealEstateUsage",
        label="Usage d’un bien immobilier",
        items=(
            EnumItem(code="RES", label="Résidentiel", order=1),
            EnumItem(code="COM", label="Location", order=2),
        ),
    )


@pytest.fixture
def real_estate(real_estate_type_enum, real_estate_usage_enum) -> AssetType:
    """A small real estate asset type built in code."""
    condition = (
        '([RealEstateType]=="PB"||[RealEstateType]=="Propriété Bâtie"'
        '||[RealEstateUsage]=="COM"||[RealEstateUsage]=="Location")'
    )
    return (
        AssetType.create("Real Estate", "Propriété Immobilière Maison et Terrain")
        .add_expected_attribute(
            AttributeDefinition.create(
                "ResidualValue", "Valeur Venale", AttributeDataType.NUMBER, is_required=True
            )
        )
        .add_expected_attribute(
            AttributeDefinition.create("Situation", "Situation", AttributeDataType.STRING)
        )
        .add_expected_attribute(AttributeDefinition.from_enum(real_estate_type_enum))
        .add_expected_attribute(
            AttributeDefinition.from_enum(real_estate_usage_enum, is_required=False)
        )
        .add_tax_rule(
            TaxRule.create(
                "TFNB",
                "TAXE FONCIERE SUR PROPRIETE NON BATIE",
                f"{condition}?0:[ResidualValue]*0.5/100",
            )
        )
        .add_tax_rule(
            TaxRule.create(
                "TFB",
                "TAXE FONCIERE SUR PROPRIETE BATIE",
                f"{condition}?[ResidualValue]*0.75/100:0",
            )
        )
    )
