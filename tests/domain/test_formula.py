"""
Tests for the tax formula engine.

Covers:
- Grammar: literals, variables, operators, precedence, functions
- Decimal arithmetic and result coercion
- Comparison and logic semantics (null, mixed types, short-circuit)
- Failure kinds: syntax, unbound variable, evaluation
- Config-time validation (validate_formula never raises)
- Attribute binding (coercion order, declared-but-absent, amount)
"""

from decimal import Decimal

import pytest

from taxflow_kernel.domain.attribute_types import AttributeDataType
from taxflow_kernel.domain.formula import (
    AMOUNT_VARIABLE,
    bind_attributes,
    coerce_result,
    coerce_variable,
    compile_formula,
    evaluate_formula,
    formula_variables,
    validate_formula,
)
from taxflow_kernel.exceptions import (
    FormulaError,
    FormulaEvaluationError,
    FormulaSyntaxError,
    UnboundVariableError,
)


def _eval(expression: str, **bindings):
    return evaluate_formula(expression, bindings)


# =========================================================================
# Grammar and arithmetic
# =========================================================================


class TestArithmetic:

    def test_scenario_a(self):
        assert _eval("[ResidualValue]*0.01", ResidualValue=Decimal("200")) == Decimal("2")

    def test_decimal_exactness(self):
        """0.1 + 0.2 is exactly 0.3: numbers never pass through float."""
        assert _eval("0.1 + 0.2") == Decimal("0.3")

    def test_precedence(self):
        assert _eval("2 + 3 * 4") == Decimal("14")
        assert _eval("(2 + 3) * 4") == Decimal("20")
        assert _eval("10 - 4 - 3") == Decimal("3")
        assert _eval("-2 * 3") == Decimal("-6")

    def test_division_and_modulo(self):
        assert _eval("1000000*0.75/100") == Decimal("7500")
        assert _eval("10 % 3") == Decimal("1")

    def test_string_concatenation(self):
        assert _eval("'Propriété ' + \"Bâtie\"") == "Propriété Bâtie"

    def test_string_escapes(self):
        assert _eval(r"'it\'s'") == "it's"

    def test_scientific_notation(self):
        assert _eval("1.5e3") == Decimal("1500")


class TestVariables:

    def test_bracketed_names_may_contain_spaces(self):
        assert _eval("[Residual Value] + 1", **{"Residual Value": Decimal("1")}) == 2

    def test_names_are_case_insensitive(self):
        assert _eval("[residualvalue] + RESIDUALVALUE", ResidualValue=Decimal("2")) == 4

    def test_formula_variables(self):
        names = formula_variables("max([A], b) + if(c > 0, [d], 0)")
        assert names == frozenset({"a", "b", "c", "d"})

    def test_function_names_are_not_variables(self):
        assert formula_variables("round(1.25, 1)") == frozenset()

    def test_compile_is_cached(self):
        assert compile_formula("[X] * 2") is compile_formula("[X] * 2")


class TestComparisonAndLogic:

    @pytest.mark.parametrize(
        "expression, expected",
        [
            ("1 == 1.0", True),
            ("1 = 2", False),
            ("1 <> 2", True),
            ("1 != 1", False),
            ("'a' < 'b'", True),
            ("2 >= 2", True),
            ("true && false", False),
            ("true || false", True),
            ("true and not false", True),
            ("!true", False),
            ("TRUE Or FALSE", True),
        ],
    )
    def test_operators(self, expression, expected):
        assert _eval(expression) is expected

    def test_null_equality(self):
        assert _eval("[Usage] == 'Location'", Usage=None) is False
        assert _eval("[Usage] == null", Usage=None) is True
        assert _eval("[Usage] != 'Location'", Usage=None) is True

    def test_mixed_type_equality_is_false(self):
        assert _eval("1 == '1'") is False
        assert _eval("true == 1") is False

    def test_mixed_type_ordering_is_error(self):
        with pytest.raises(FormulaEvaluationError, match="cannot order"):
            _eval("1 < 'a'")

    def test_ternary_right_associative(self):
        assert _eval("false ? 1 : true ? 2 : 3") == Decimal("2")

    def test_short_circuit_or(self):
        """The right operand would divide by zero if evaluated."""
        assert _eval("true || 1/0 > 0") is True

    def test_short_circuit_and(self):
        assert _eval("false && 1/0 > 0") is False

    def test_ternary_evaluates_one_branch(self):
        assert _eval("true ? 1 : 1/0") == Decimal("1")

    def test_logic_requires_booleans(self):
        with pytest.raises(FormulaEvaluationError, match="boolean"):
            _eval("1 && true")

    def test_condition_requires_boolean(self):
        with pytest.raises(FormulaEvaluationError):
            _eval("[X] ? 1 : 0", X="yes")


class TestFunctions:

    def test_abs_min_max(self):
        assert _eval("abs(-3)") == Decimal("3")
        assert _eval("min(4, 2, 9)") == Decimal("2")
        assert _eval("max(4, 2, 9)") == Decimal("9")

    def test_round_half_up(self):
        assert _eval("round(2.5)") == Decimal("3")
        assert _eval("round(1.245, 2)") == Decimal("1.25")

    def test_if_is_lazy(self):
        assert _eval("if(1 > 0, 10, 1/0)") == Decimal("10")

    def test_function_names_case_insensitive(self):
        assert _eval("MAX(1, 2)") == Decimal("2")

    def test_round_places_must_be_whole(self):
        with pytest.raises(FormulaEvaluationError):
            _eval("round(1.5, 0.5)")


# =========================================================================
# Failures
# =========================================================================


class TestFailures:

    @pytest.mark.parametrize(
        "expression",
        ["", "1 +", "(1", "[Unclosed", "[]", "'open", "1 # 2", "1 2", "a.b", "lambda x: x"],
    )
    def test_syntax_errors(self, expression):
        with pytest.raises(FormulaSyntaxError):
            compile_formula(expression)

    def test_unknown_function_is_syntax_error(self):
        with pytest.raises(FormulaSyntaxError, match="Disallowed function call: exp"):
            compile_formula("exp(1)")

    def test_wrong_arity_is_syntax_error(self):
        with pytest.raises(FormulaSyntaxError):
            compile_formula("if(true, 1)")

    def test_unbound_variables_sorted(self):
        with pytest.raises(UnboundVariableError) as exc_info:
            _eval("[b] + [a]")
        assert exc_info.value.names == ["a", "b"]
        assert exc_info.value.code == "UNBOUND_VARIABLE"

    def test_division_by_zero(self):
        with pytest.raises(FormulaEvaluationError):
            _eval("[X] / 0", X=Decimal("1"))

    def test_arithmetic_on_null(self):
        with pytest.raises(FormulaEvaluationError, match="null"):
            _eval("[X] * 2", X=None)

    def test_all_failures_share_base(self):
        for cls in (FormulaSyntaxError, UnboundVariableError, FormulaEvaluationError):
            assert issubclass(cls, FormulaError)

    def test_syntax_error_position(self):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            compile_formula("1 + * 2")
        assert exc_info.value.position == 4


class TestValidateFormula:
    """Config-time check: returns errors, never raises."""

    def test_valid(self):
        assert validate_formula("([A]=='x'||[B]=='y')?[C]*0.75/100:0") == []

    def test_syntax_error_reported(self):
        errors = validate_formula("1 +")
        assert len(errors) == 1
        assert errors[0].message.startswith("Syntax error")

    @pytest.mark.parametrize("expression", ["__import__('os')", "exp(1)", "eval('1')"])
    def test_disallowed_functions(self, expression):
        errors = validate_formula(expression)
        assert errors
        assert "Disallowed function call" in errors[0].message

    def test_attribute_access_rejected(self):
        assert validate_formula("x.__class__")

    def test_arity_reported(self):
        errors = validate_formula("abs(1, 2)")
        assert "argument" in errors[0].message


# =========================================================================
# Binding and coercion
# =========================================================================


class TestCoercion:

    @pytest.mark.parametrize(
        "raw, expected",
        [("200", Decimal("200")), ("true", True), ("PB", "PB"), (None, None), ("", "")],
    )
    def test_coerce_variable_order(self, raw, expected):
        assert coerce_variable(raw) == expected

    @pytest.mark.parametrize(
        "value, expected",
        [
            (Decimal("7500"), Decimal("7500")),
            (3, Decimal("3")),
            (0.5, Decimal("0.5")),
            ("12.5", Decimal("12.5")),
            (True, None),
            (None, None),
            ("text", None),
            (Decimal("NaN"), None),
        ],
    )
    def test_coerce_result(self, value, expected):
        assert coerce_result(value) == expected


class TestBindAttributes:

    def test_declared_absent_bound_to_none(self, make_attribute):
        attrs = [make_attribute("ResidualValue", "500000", AttributeDataType.NUMBER)]
        bindings = bind_attributes(attrs, declared_keys=["ResidualValue", "RealEstateUsage"])
        assert bindings == {"residualvalue": Decimal("500000"), "realestateusage": None}

    def test_undeclared_absent_stays_unbound(self, make_attribute):
        bindings = bind_attributes([make_attribute("A", "1")])
        assert "b" not in bindings

    def test_binding_ignores_declared_type(self, make_attribute):
        """Coercion goes numeric, boolean, text whatever the declared type."""
        bindings = bind_attributes([make_attribute("Flag", "TRUE", AttributeDataType.STRING)])
        assert bindings["flag"] is True

    def test_amount_overrides_attribute(self, make_attribute):
        attrs = [make_attribute("Amount", "1", AttributeDataType.NUMBER)]
        bindings = bind_attributes(attrs, amount=250)
        assert bindings[AMOUNT_VARIABLE] == Decimal("250")

    def test_float_amount_is_exact_decimal(self):
        assert bind_attributes([], amount=0.1)[AMOUNT_VARIABLE] == Decimal("0.1")
