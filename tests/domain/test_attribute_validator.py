"""
Tests for schema validation of attribute sets.

Covers:
- Each violation kind and its message
- Ordering (declaration order) and non-fatal type mismatch
- Case-insensitive matching and the duplicate-key tie-break
- Structured logging of validation outcomes
"""

from datetime import timedelta

import pytest

from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.attribute_validator import (
    index_attributes,
    validate_attribute_set,
)
from taxflow_kernel.domain.dtos import (
    INVALID_PATTERN,
    INVALID_VALUE,
    MISSING_ENUM_DEFINITION,
    MISSING_REQUIRED_ATTRIBUTE,
    PATTERN_MISMATCH,
    TYPE_MISMATCH,
    VALUE_NOT_ALLOWED,
)
from taxflow_kernel.domain.schemas import AttributeDefinition, EnumDefinition

NUMBER = AttributeDataType.NUMBER
STRING = AttributeDataType.STRING
ENUM = AttributeDataType.ENUM


@pytest.fixture
def residual_value() -> AttributeDefinition:
    return AttributeDefinition.create("ResidualValue", "Valeur Venale", NUMBER, is_required=True)


class TestMissingRequired:

    def test_required_absent(self, residual_value):
        violations = validate_attribute_set([residual_value], [])
        assert len(violations) == 1
        assert violations[0].code == MISSING_REQUIRED_ATTRIBUTE
        assert violations[0].key == "ResidualValue"
        assert violations[0].message == "Missing required attribute: 'ResidualValue'."

    def test_optional_absent_is_skipped(self):
        optional = AttributeDefinition.create("Situation", "Situation", STRING)
        assert validate_attribute_set([optional], []) == []

    def test_undeclared_attributes_ignored(self, make_attribute):
        assert validate_attribute_set([], [make_attribute("Extra", "x")]) == []

    def test_none_attributes_rejected(self, residual_value):
        with pytest.raises(ValueError):
            validate_attribute_set([residual_value], None)


class TestPresentAttribute:

    def test_valid_number(self, residual_value, make_attribute):
        attrs = [make_attribute("ResidualValue", "200", NUMBER, True)]
        assert validate_attribute_set([residual_value], attrs) == []

    def test_type_mismatch_is_not_fatal(self, residual_value, make_attribute):
        """The remaining checks still run after a type mismatch."""
        attrs = [make_attribute("ResidualValue", "PB", ENUM, True)]
        violations = validate_attribute_set([residual_value], attrs)
        assert [v.code for v in violations] == [TYPE_MISMATCH]
        assert violations[0].message == (
            "Invalid type for 'ResidualValue': expected Number, got Enum."
        )

    def test_invalid_value(self, residual_value, make_attribute):
        attrs = [make_attribute("ResidualValue", "1 000", NUMBER, True)]
        violations = validate_attribute_set([residual_value], attrs)
        assert [v.code for v in violations] == [INVALID_VALUE]
        assert "'ResidualValue'" in violations[0].message

    def test_type_mismatch_and_invalid_value_together(self, residual_value, make_attribute):
        attrs = [make_attribute("ResidualValue", "soon", AttributeDataType.DATE, True)]
        codes = [v.code for v in validate_attribute_set([residual_value], attrs)]
        assert codes == [TYPE_MISMATCH, INVALID_VALUE]

    def test_key_match_is_case_insensitive(self, residual_value, make_attribute):
        attrs = [make_attribute("residualvalue", "10", NUMBER)]
        assert validate_attribute_set([residual_value], attrs) == []


class TestPattern:

    def test_full_match_required(self, make_attribute):
        postcode = AttributeDefinition.create(
            "PostCode", "Code postal", STRING, regex_pattern=r"\d{5}"
        )
        assert validate_attribute_set([postcode], [make_attribute("PostCode", "75001")]) == []

        violations = validate_attribute_set([postcode], [make_attribute("PostCode", "75001A")])
        assert [v.code for v in violations] == [PATTERN_MISMATCH]
        assert "'PostCode'" in violations[0].message

    def test_blank_optional_skips_pattern(self, make_attribute):
        postcode = AttributeDefinition.create(
            "PostCode", "Code postal", STRING, regex_pattern=r"\d{5}"
        )
        assert validate_attribute_set([postcode], [make_attribute("PostCode", "")]) == []

    def test_uncompilable_pattern_reported(self, make_attribute):
        broken = AttributeDefinition.create("Code", "Code", STRING, regex_pattern="([")
        violations = validate_attribute_set([broken], [make_attribute("Code", "x")])
        assert [v.code for v in violations] == [INVALID_PATTERN]
        assert "'Code'" in violations[0].message


class TestEnumMembership:

    def test_code_accepted(self, real_estate_type_enum, make_attribute):
        definition = AttributeDefinition.from_enum(real_estate_type_enum)
        attrs = [make_attribute("RealEstateType", "PB", ENUM, True)]
        assert validate_attribute_set([definition], attrs) == []

    def test_code_case_insensitive(self, real_estate_type_enum, make_attribute):
        definition = AttributeDefinition.from_enum(real_estate_type_enum)
        attrs = [make_attribute("RealEstateType", "pnb", ENUM, True)]
        assert validate_attribute_set([definition], attrs) == []

    def test_label_rejected(self, real_estate_type_enum, make_attribute):
        definition = AttributeDefinition.from_enum(real_estate_type_enum)
        attrs = [make_attribute("RealEstateType", "Propriété Bâtie", ENUM, True)]
        violations = validate_attribute_set([definition], attrs)
        assert [v.code for v in violations] == [PATTERN_MISMATCH, VALUE_NOT_ALLOWED]
        assert violations[1].message == (
            "Value 'Propriété Bâtie' for 'RealEstateType' is not an allowed value. "
            "Allowed codes: PB, PNB."
        )

    def test_blank_optional_enum_is_absent(self, real_estate_usage_enum, make_attribute):
        definition = AttributeDefinition.from_enum(real_estate_usage_enum, is_required=False)
        for value in ("", "   ", None):
            attrs = [make_attribute("RealEstateUsage", value, ENUM)]
            assert validate_attribute_set([definition], attrs) == []

    def test_blank_required_enum_still_checked(self, real_estate_type_enum, make_attribute):
        definition = AttributeDefinition.from_enum(real_estate_type_enum)
        attrs = [make_attribute("RealEstateType", "", ENUM, True)]
        codes = [v.code for v in validate_attribute_set([definition], attrs)]
        assert codes == [INVALID_VALUE, PATTERN_MISMATCH, VALUE_NOT_ALLOWED]

    def test_blank_optional_still_needs_enum_definition(self, make_attribute):
        definition = AttributeDefinition.create("Kind", "Kind", ENUM)
        violations = validate_attribute_set([definition], [make_attribute("Kind", "", ENUM)])
        assert [v.code for v in violations] == [MISSING_ENUM_DEFINITION]

    def test_missing_enum_definition(self, make_attribute):
        definition = AttributeDefinition.create("Kind", "Kind", ENUM)
        violations = validate_attribute_set([definition], [make_attribute("Kind", "A", ENUM)])
        assert [v.code for v in violations] == [MISSING_ENUM_DEFINITION]
        assert violations[0].message == "Enum definition missing or empty for 'Kind'."

    def test_empty_enum_definition(self, make_attribute):
        definition = AttributeDefinition.from_enum(EnumDefinition("Kind", "Kind"))
        violations = validate_attribute_set([definition], [make_attribute("Kind", "A", ENUM)])
        assert MISSING_ENUM_DEFINITION in [v.code for v in violations]


class TestOrdering:

    def test_violations_follow_declaration_order(self, real_estate_type_enum, make_attribute):
        definitions = [
            AttributeDefinition.create("ResidualValue", "Valeur Venale", NUMBER, is_required=True),
            AttributeDefinition.from_enum(real_estate_type_enum),
        ]
        attrs = [make_attribute("RealEstateType", "XX", ENUM, True)]
        keys = [v.key for v in validate_attribute_set(definitions, attrs)]
        assert keys[0] == "ResidualValue"
        assert set(keys[1:]) == {"RealEstateType"}


class TestDuplicateKeys:
    """Latest valid_from wins; ties go to the later entry."""

    def test_latest_valid_from_wins(self, make_attribute, clock):
        older = make_attribute("ResidualValue", "bad", NUMBER, valid_from=clock.now())
        newer = make_attribute(
            "RESIDUALVALUE", "100", NUMBER, valid_from=clock.now() + timedelta(days=1)
        )
        assert index_attributes([newer, older])["residualvalue"] is newer
        assert index_attributes([older, newer])["residualvalue"] is newer

    def test_tie_goes_to_later_entry(self, make_attribute):
        first = make_attribute("ResidualValue", "1", NUMBER)
        second = make_attribute("residualValue", "2", NUMBER)
        assert index_attributes([first, second])["residualvalue"] is second

    def test_validation_uses_winner(self, residual_value, make_attribute, clock):
        stale = make_attribute("ResidualValue", "oops", NUMBER, valid_from=clock.now())
        current = make_attribute(
            "ResidualValue", "500", NUMBER, valid_from=clock.now() + timedelta(hours=1)
        )
        assert validate_attribute_set([residual_value], [current, stale]) == []

    def test_duplicate_logged(self, make_attribute, captured_logs):
        index_attributes([make_attribute("K", "1"), make_attribute("k", "2")])
        assert any(r["message"] == "duplicate_attribute_key" for r in captured_logs())


class TestValidationLogging:

    def test_failure_logged(self, residual_value, captured_logs):
        validate_attribute_set([residual_value], [])
        failed = [r for r in captured_logs() if r["message"] == "attribute_validation_failed"]
        assert len(failed) == 1
        assert failed[0]["level"] == "WARNING"
        assert failed[0]["violation_codes"] == [MISSING_REQUIRED_ATTRIBUTE]
        assert failed[0]["logger"] == "taxflow_kernel.domain.attribute_validator"

    def test_success_logged(self, residual_value, make_attribute, captured_logs):
        validate_attribute_set([residual_value], [make_attribute("ResidualValue", "1", NUMBER)])
        assert any(r["message"] == "attribute_validation_passed" for r in captured_logs())
