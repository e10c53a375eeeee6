"""
TaxableAsset -- a validated attribute set bound to an asset type.

Responsibility:
    Holds the concrete attributes of one asset and turns them into tax
    lines by evaluating the asset type's enabled rules.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - attributes satisfy the asset type's schema at construction
      (no partially valid asset is produced)
    - calculate_tax_lines returns exactly one line per enabled rule, in
      rule order

Failure modes:
    - ValueError on missing asset type / attributes
    - AttributeValidationError when the schema check fails
    - AssetTypeNotSetError when the asset type reference was cleared
    - FormulaError subclasses propagate from rule evaluation

Audit relevance:
    Calculations emit a ``tax_lines_calculated`` log record carrying the
    asset id, evaluation date and per-line amounts.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from taxflow_kernel.domain.asset_type import AssetType
from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.domain.clock import Clock, as_utc, default_clock
from taxflow_kernel.domain.dtos import TaxLine
from taxflow_kernel.exceptions import AssetTypeNotSetError, AttributeValidationError
from taxflow_kernel.logging_config import LogContext, get_logger

logger = get_logger("domain.taxable_asset")

_ZERO = Decimal("0")


class TaxableAsset:
    """
    An asset whose attributes were validated against its asset type.

    Attributes can be added or removed after construction; those changes
    are not re-validated. Temporal validity is applied when tax lines are
    calculated.
    """

    def __init__(
        self,
        asset_type: AssetType | None,
        attributes: Iterable[ExtendedAttribute],
        id: UUID | None = None,
        clock: Clock | None = None,
    ):
        self.id: UUID = id or uuid4()
        self.asset_type = asset_type
        self._attributes: list[ExtendedAttribute] = list(attributes)
        self._clock = clock or default_clock()

    @classmethod
    def create(
        cls,
        asset_type: AssetType,
        attributes: Iterable[ExtendedAttribute],
        id: UUID | None = None,
        clock: Clock | None = None,
    ) -> TaxableAsset:
        """
        Validate ``attributes`` against ``asset_type`` and build the asset.

        Raises:
            ValueError: asset_type or attributes is None.
            AttributeValidationError: one or more schema violations.
        """
        if asset_type is None:
            raise ValueError("asset_type is required")
        if attributes is None:
            raise ValueError("attributes is required")

        snapshot = list(attributes)
        with LogContext.bind(asset_type_id=str(asset_type.id)):
            errors = asset_type.validate_attributes(snapshot)
            if errors:
                logger.warning(
                    "taxable_asset_rejected",
                    extra={
                        "asset_type": asset_type.name,
                        "violation_count": len(errors),
                    },
                )
                raise AttributeValidationError(asset_type.name, errors)

        asset = cls(asset_type, snapshot, id=id, clock=clock)
        logger.info(
            "taxable_asset_created",
            extra={
                "asset_id": str(asset.id),
                "asset_type": asset_type.name,
                "attribute_count": len(snapshot),
            },
        )
        return asset

    def __repr__(self) -> str:
        type_name = self.asset_type.name if self.asset_type is not None else None
        return f"TaxableAsset(id={self.id}, asset_type={type_name!r})"

    @property
    def attributes(self) -> tuple[ExtendedAttribute, ...]:
        return tuple(self._attributes)

    def effective_attributes(self, at: datetime) -> tuple[ExtendedAttribute, ...]:
        """Attributes whose validity window contains ``at``."""
        return tuple(a for a in self._attributes if a.is_effective(at))

    def add_attribute(
        self,
        key: str,
        value: str | None,
        data_type: AttributeDataType,
        is_required: bool = False,
    ) -> ExtendedAttribute:
        """Attach a new attribute valid from the clock's current time."""
        attribute = ExtendedAttribute.create(
            key,
            value,
            data_type,
            is_required=is_required,
            clock=self._clock,
        )
        self._attributes.append(attribute)
        logger.debug(
            "attribute_added",
            extra={"asset_id": str(self.id), "key": attribute.key},
        )
        return attribute

    def remove_attribute(self, attribute: ExtendedAttribute) -> bool:
        # Identity match: equal-looking attributes are distinct entries
        for index, candidate in enumerate(self._attributes):
            if candidate is attribute:
                del self._attributes[index]
                return True
        return False

    def calculate_tax_lines(
        self,
        base_amount: Decimal | int | float | None = None,
        for_date: datetime | None = None,
    ) -> list[TaxLine]:
        """
        Evaluate every enabled rule of the asset type.

        Only attributes effective at ``for_date`` (default: now, UTC; a
        naive date is read as UTC) are bound. A rule yielding no numeric value contributes a zero line.

        Raises:
            AssetTypeNotSetError: the asset type reference is unset.
            FormulaError: a rule failed to evaluate.
        """
        asset_type = self.asset_type
        if asset_type is None:
            raise AssetTypeNotSetError(str(self.id))

        at = as_utc(for_date) if for_date is not None else self._clock.now_utc()
        effective = self.effective_attributes(at)

        lines: list[TaxLine] = []
        with LogContext.bind(asset_id=str(self.id), asset_type_id=str(asset_type.id)):
            for rule in asset_type.enabled_tax_rules():
                with LogContext.bind(rule_key=rule.key):
                    amount = asset_type.evaluate_tax_rule(rule.key, effective, base_amount)
                lines.append(
                    TaxLine(
                        key=rule.key,
                        label=rule.label,
                        amount=amount if amount is not None else _ZERO,
                    )
                )

            logger.info(
                "tax_lines_calculated",
                extra={
                    "asset_type": asset_type.name,
                    "for_date": at.isoformat(),
                    "effective_attribute_count": len(effective),
                    "lines": {line.key: str(line.amount) for line in lines},
                },
            )
        return lines
