"""
Attribute schema data structures.

Provides the schema side of the attribute model: enumerations of allowed
codes and the definitions an asset type declares for its expected
attributes. This is part of the functional core - no I/O, no ORM.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.exceptions import DuplicateEnumCodeError


@dataclass(frozen=True)
class EnumItem:
    """One allowed value of an enumeration: stored code plus display label."""

    code: str
    label: str
    order: int = 0

    def __post_init__(self) -> None:
        if not self.code or not self.code.strip():
            raise ValueError("Enum item code must not be blank")


@dataclass(frozen=True)
class EnumDefinition:
    """
    Named, ordered set of allowed codes backing an Enum-typed attribute.

    Immutable and hashable, so one definition may be shared by reference
    between attribute definitions.

    Raises:
        ValueError: blank key or label.
        DuplicateEnumCodeError: two items share a code (trimmed, any case).
    """

    key: str
    label: str
    items: tuple[EnumItem, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.key or not self.key.strip():
            raise ValueError("Enum definition key must not be blank")
        if not self.label or not self.label.strip():
            raise ValueError(f"Enum definition '{self.key}' label must not be blank")

        # Accept any iterable of items, store a tuple
        object.__setattr__(self, "items", tuple(self.items))

        seen: set[str] = set()
        for item in self.items:
            normalized = item.code.strip().casefold()
            if normalized in seen:
                raise DuplicateEnumCodeError(self.key, item.code)
            seen.add(normalized)

    def codes(self) -> tuple[str, ...]:
        return tuple(item.code for item in self.items)

    def sorted_items(self) -> tuple[EnumItem, ...]:
        """Items in presentation order."""
        return tuple(sorted(self.items, key=lambda item: item.order))

    def has_code(self, value: str | None) -> bool:
        """Trimmed, case-insensitive membership test against item codes."""
        if value is None:
            return False
        candidate = value.strip().casefold()
        return any(item.code.strip().casefold() == candidate for item in self.items)

    def build_code_regex(self) -> str:
        """
        Anchored, case-insensitive alternation over the item codes.

        Longer codes come first so that no code is shadowed by one of its
        prefixes (``PNB`` before ``PB``). An enum without items yields a
        pattern that matches nothing.
        """
        if not self.items:
            return "(?!)"
        codes = sorted(
            (item.code.strip() for item in self.items),
            key=len,
            reverse=True,
        )
        alternation = "|".join(re.escape(code) for code in codes)
        return f"(?i)^(?:{alternation})$"


@dataclass(eq=False)
class AttributeDefinition:
    """
    Describes one attribute expected by an asset type.

    Build instances through ``create`` (scalar attribute) or ``from_enum``
    (enum-backed attribute with a derived regex). After construction only
    the label and regex pattern change, through ``update_label`` and
    ``set_regex_pattern``.
    """

    key: str
    label: str
    data_type: AttributeDataType = AttributeDataType.STRING
    is_required: bool = False
    enum_definition: EnumDefinition | None = None
    regex_pattern: str | None = None

    @classmethod
    def create(
        cls,
        key: str,
        label: str,
        data_type: AttributeDataType,
        is_required: bool = False,
        regex_pattern: str | None = None,
    ) -> AttributeDefinition:
        """
        Create a scalar attribute definition.

        Raises:
            ValueError: blank key or label.
        """
        if not key or not key.strip():
            raise ValueError("Attribute definition key must not be blank")
        if not label or not label.strip():
            raise ValueError(f"Attribute definition '{key}' label must not be blank")
        return cls(
            key=key.strip(),
            label=label.strip(),
            data_type=data_type,
            is_required=is_required,
            regex_pattern=regex_pattern,
        )

    @classmethod
    def from_enum(
        cls,
        enum_definition: EnumDefinition,
        is_required: bool = True,
        key: str | None = None,
        label: str | None = None,
    ) -> AttributeDefinition:
        """
        Create an Enum-typed definition from an enum definition.

        Key and label default to the enum's (a blank override counts as
        absent); the regex accepts exactly the item codes.

        Raises:
            ValueError: enum_definition is None.
        """
        if enum_definition is None:
            raise ValueError("Enum definition is required")
        return cls(
            key=(key or "").strip() or enum_definition.key.strip(),
            label=(label or "").strip() or enum_definition.label.strip(),
            data_type=AttributeDataType.ENUM,
            is_required=is_required,
            enum_definition=enum_definition,
            regex_pattern=enum_definition.build_code_regex(),
        )

    def update_label(self, label: str) -> AttributeDefinition:
        if not label or not label.strip():
            raise ValueError("Label must not be blank")
        self.label = label.strip()
        return self

    def set_regex_pattern(self, pattern: str | None) -> AttributeDefinition:
        """Set the validation pattern; a blank pattern clears it."""
        self.regex_pattern = pattern if pattern and pattern.strip() else None
        return self
