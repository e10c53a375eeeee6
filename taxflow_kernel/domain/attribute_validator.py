"""AttributeValidator -- Pure attribute-set validation against a schema."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.domain.dtos import (
    INVALID_PATTERN,
    INVALID_VALUE,
    MISSING_ENUM_DEFINITION,
    MISSING_REQUIRED_ATTRIBUTE,
    PATTERN_MISMATCH,
    TYPE_MISMATCH,
    VALUE_NOT_ALLOWED,
    AttributeViolation,
)
from taxflow_kernel.domain.schemas import AttributeDefinition
from taxflow_kernel.logging_config import get_logger

logger = get_logger("domain.attribute_validator")


def index_attributes(
    attributes: Iterable[ExtendedAttribute],
) -> dict[str, ExtendedAttribute]:
    """
    Case-insensitive key -> attribute index.

    When several attributes share a key, the one with the latest
    ``valid_from`` is kept; on equal ``valid_from`` the later entry wins.
    """
    index: dict[str, ExtendedAttribute] = {}
    for attribute in attributes:
        if not attribute.key or not attribute.key.strip():
            continue
        normalized = attribute.key.strip().casefold()
        current = index.get(normalized)
        if current is not None:
            logger.debug(
                "duplicate_attribute_key",
                extra={
                    "key": attribute.key,
                    "kept_valid_from": max(
                        current.valid_from, attribute.valid_from
                    ).isoformat(),
                },
            )
            if attribute.valid_from < current.valid_from:
                continue
        index[normalized] = attribute
    return index


def validate_attribute_set(
    definitions: Sequence[AttributeDefinition],
    attributes: Iterable[ExtendedAttribute],
) -> list[AttributeViolation]:
    """
    Validate an attribute collection against expected-attribute definitions.

    Definitions are checked in declaration order. An empty result means the
    attributes satisfy the schema. Attributes without a definition are
    ignored; absent optional definitions are skipped.
    """
    if attributes is None:
        raise ValueError("attributes is required")

    by_key = index_attributes(attributes)
    violations: list[AttributeViolation] = []

    logger.debug(
        "attribute_validation_started",
        extra={
            "definition_count": len(definitions),
            "attribute_keys": sorted(by_key),
        },
    )

    for expected in definitions:
        provided = by_key.get(expected.key.strip().casefold())

        if provided is None:
            if expected.is_required:
                violations.append(
                    AttributeViolation(
                        code=MISSING_REQUIRED_ATTRIBUTE,
                        message=f"Missing required attribute: '{expected.key}'.",
                        key=expected.key,
                    )
                )
            continue

        violations.extend(validate_attribute(expected, provided))

    if violations:
        logger.warning(
            "attribute_validation_failed",
            extra={
                "violation_count": len(violations),
                "violation_codes": [v.code for v in violations],
            },
        )
    else:
        logger.debug("attribute_validation_passed")

    return violations


def validate_attribute(
    expected: AttributeDefinition,
    provided: ExtendedAttribute,
) -> list[AttributeViolation]:
    """
    Run the type, value, pattern and enum checks for one attribute.

    A blank value on an optional definition is treated like an absent one:
    the pattern and enum membership checks are skipped.
    """
    violations: list[AttributeViolation] = []
    key = expected.key
    blank_optional = not expected.is_required and not (provided.value or "").strip()

    if provided.data_type_code != expected.data_type.code:
        violations.append(
            AttributeViolation(
                code=TYPE_MISMATCH,
                message=(
                    f"Invalid type for '{key}': expected {expected.data_type}, "
                    f"got {provided.data_type}."
                ),
                key=key,
            )
        )

    if not provided.is_valid_value():
        violations.append(
            AttributeViolation(
                code=INVALID_VALUE,
                message=f"Invalid value for '{key}' as {provided.data_type}.",
                key=key,
            )
        )

    if not blank_optional:
        pattern_violation = _check_pattern(expected, provided)
        if pattern_violation is not None:
            violations.append(pattern_violation)

    if expected.data_type == AttributeDataType.ENUM:
        enum_violation = _check_enum_membership(expected, provided, blank_optional)
        if enum_violation is not None:
            violations.append(enum_violation)

    return violations


def _check_pattern(
    expected: AttributeDefinition,
    provided: ExtendedAttribute,
) -> AttributeViolation | None:
    if not expected.regex_pattern:
        return None
    try:
        matched = re.fullmatch(expected.regex_pattern, provided.value or "")
    except re.error as e:
        return AttributeViolation(
            code=INVALID_PATTERN,
            message=(
                f"Invalid pattern on definition '{expected.key}': "
                f"{expected.regex_pattern} ({e.msg})."
            ),
            key=expected.key,
        )
    if matched is None:
        return AttributeViolation(
            code=PATTERN_MISMATCH,
            message=(
                f"Value '{provided.value}' for '{expected.key}' does not match "
                f"pattern {expected.regex_pattern}."
            ),
            key=expected.key,
        )
    return None


def _check_enum_membership(
    expected: AttributeDefinition,
    provided: ExtendedAttribute,
    skip_membership: bool = False,
) -> AttributeViolation | None:
    enum_definition = expected.enum_definition
    if enum_definition is None or not enum_definition.items:
        return AttributeViolation(
            code=MISSING_ENUM_DEFINITION,
            message=f"Enum definition missing or empty for '{expected.key}'.",
            key=expected.key,
        )
    if skip_membership or enum_definition.has_code(provided.value):
        return None
    allowed = ", ".join(enum_definition.codes())
    return AttributeViolation(
        code=VALUE_NOT_ALLOWED,
        message=(
            f"Value '{provided.value}' for '{expected.key}' is not an allowed "
            f"value. Allowed codes: {allowed}."
        ),
        key=expected.key,
    )
