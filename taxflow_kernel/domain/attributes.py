"""
ExtendedAttribute -- a typed, temporally scoped key/value pair.

One concrete attribute instance attached to an asset. The value is kept in
its raw textual form; ``typed_value()`` parses it according to the declared
data type and ``is_valid_value()`` reports whether that parse succeeds.

Temporal validity:
    An attribute is effective at time T iff valid_from <= T and
    (valid_to is None or T <= valid_to).
    Naive datetimes are read as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from taxflow_kernel.domain.attribute_types import AttributeDataType, parse_typed_value
from taxflow_kernel.domain.clock import Clock, as_utc, default_clock


@dataclass(eq=False)
class ExtendedAttribute:
    """
    A concrete attribute value on an asset.

    Identity semantics (eq=False): two attributes with equal fields are
    still distinct entries of an asset's attribute collection.
    """

    key: str
    value: str
    data_type: AttributeDataType
    is_required: bool
    valid_from: datetime
    valid_to: datetime | None = None

    def __post_init__(self):
        self.valid_from = as_utc(self.valid_from)
        self.valid_to = as_utc(self.valid_to)

    @classmethod
    def create(
        cls,
        key: str,
        value: str | None,
        data_type: AttributeDataType,
        is_required: bool = False,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
        clock: Clock | None = None,
    ) -> ExtendedAttribute:
        """
        Create an attribute.

        Raises:
            ValueError: blank key, or valid_to earlier than valid_from.
        """
        if not key or not key.strip():
            raise ValueError("Attribute key must not be blank")
        if valid_from is None:
            valid_from = (clock or default_clock()).now_utc()
        valid_from = as_utc(valid_from)
        valid_to = as_utc(valid_to)
        if valid_to is not None and valid_to < valid_from:
            raise ValueError(
                f"Attribute '{key}': valid_to {valid_to.isoformat()} is before "
                f"valid_from {valid_from.isoformat()}"
            )
        return cls(
            key=key,
            value=value if value is not None else "",
            data_type=data_type,
            is_required=is_required,
            valid_from=valid_from,
            valid_to=valid_to,
        )

    @property
    def data_type_code(self) -> int:
        return self.data_type.code

    def is_effective(self, at: datetime) -> bool:
        """True if this attribute's validity window contains ``at``."""
        at = as_utc(at)
        if self.valid_from > at:
            return False
        return self.valid_to is None or at <= self.valid_to

    def is_valid_value(self) -> bool:
        """Whether the raw value is well formed for the declared data type.

        A blank value is acceptable only when the attribute is optional.
        Enum values are always structurally valid here; membership needs the
        enum definition and is checked by the schema validator.
        """
        if not self.value or not self.value.strip():
            return not self.is_required
        try:
            parse_typed_value(self.value, self.data_type)
        except ValueError:
            return False
        return True

    def typed_value(self) -> Any:
        """The value parsed per data type (None when blank)."""
        return parse_typed_value(self.value, self.data_type)

    def update_value(
        self,
        value: str | None,
        data_type: AttributeDataType | None = None,
        is_required: bool | None = None,
    ) -> ExtendedAttribute:
        self.value = value if value is not None else ""
        if data_type is not None:
            self.data_type = data_type
        if is_required is not None:
            self.is_required = is_required
        return self

    def expire(self, at: datetime) -> ExtendedAttribute:
        """Close the validity window at ``at``."""
        at = as_utc(at)
        if at < self.valid_from:
            raise ValueError(
                f"Attribute '{self.key}' cannot expire before it becomes valid"
            )
        self.valid_to = at
        return self
