"""
Typed Exception Hierarchy for the TaxFlow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel have to tell apart three very different failures:

  - a schema that was assembled wrongly (duplicate attribute or rule keys),
  - an asset whose attributes do not satisfy its schema,
  - a tax formula that cannot be evaluated.

Each of these has its own exception class with a machine-readable ``code``
and structured attributes, so callers catch by type and never parse
messages.

Plain precondition failures on constructors (blank key, blank name, missing
required reference) raise ``ValueError``, like any other Python argument
error.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    TaxFlowKernelError (base)
    |
    +-- AssetTypeError
    |   +-- DuplicateAttributeDefinitionError
    |   +-- DuplicateTaxRuleError
    |
    +-- EnumDefinitionError
    |   +-- DuplicateEnumCodeError
    |
    +-- TaxableAssetError
    |   +-- AttributeValidationError
    |   +-- AssetTypeNotSetError
    |
    +-- FormulaError
        +-- FormulaSyntaxError
        +-- UnboundVariableError
        +-- FormulaEvaluationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                           | When Raised
--------------|--------------------------------|----------------------------------
Asset type    | DUPLICATE_ATTRIBUTE_DEFINITION | Attribute key already declared
              | DUPLICATE_TAX_RULE             | Rule key already declared
--------------|--------------------------------|----------------------------------
Enum          | DUPLICATE_ENUM_CODE            | Two items share a code
--------------|--------------------------------|----------------------------------
Taxable asset | ATTRIBUTE_VALIDATION_FAILED    | Attributes violate the schema
              | ASSET_TYPE_NOT_SET             | Asset has no asset type
--------------|--------------------------------|----------------------------------
Formula       | FORMULA_SYNTAX_ERROR           | Formula cannot be parsed
              | UNBOUND_VARIABLE               | Formula names an unbound variable
              | FORMULA_EVALUATION_ERROR       | Runtime fault (type, div by zero)

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        asset = TaxableAsset.create(asset_type, attributes)
    except AttributeValidationError as e:
        return {"error": e.code, "violations": e.violations}

    try:
        lines = asset.calculate_tax_lines(base_amount)
    except UnboundVariableError as e:
        log.error("rule %s needs %s", e.rule_key, e.names)

A formula that evaluates to a non-numeric value is NOT an error: the rule
simply contributes nothing (``None``, or a zero line during calculation).
"""


class TaxFlowKernelError(Exception):
    """
    Base exception for all taxflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TAXFLOW_KERNEL_ERROR"


# Asset type (aggregate invariant) exceptions


class AssetTypeError(TaxFlowKernelError):
    """Base exception for asset type aggregate errors."""

    code: str = "ASSET_TYPE_ERROR"


class DuplicateAttributeDefinitionError(AssetTypeError):
    """An expected attribute with the same key is already declared."""

    code: str = "DUPLICATE_ATTRIBUTE_DEFINITION"

    def __init__(self, asset_type_name: str, key: str):
        self.asset_type_name = asset_type_name
        self.key = key
        super().__init__(
            f"Asset type '{asset_type_name}' already declares attribute '{key}'"
        )


class DuplicateTaxRuleError(AssetTypeError):
    """A tax rule with the same key is already declared."""

    code: str = "DUPLICATE_TAX_RULE"

    def __init__(self, asset_type_name: str, key: str):
        self.asset_type_name = asset_type_name
        self.key = key
        super().__init__(
            f"Asset type '{asset_type_name}' already declares tax rule '{key}'"
        )


# Enum definition exceptions


class EnumDefinitionError(TaxFlowKernelError):
    """Base exception for enum definition errors."""

    code: str = "ENUM_DEFINITION_ERROR"


class DuplicateEnumCodeError(EnumDefinitionError):
    """Two items of one enum definition share a code."""

    code: str = "DUPLICATE_ENUM_CODE"

    def __init__(self, enum_key: str, item_code: str):
        self.enum_key = enum_key
        self.item_code = item_code
        super().__init__(
            f"Enum definition '{enum_key}' has duplicate item code '{item_code}'"
        )


# Taxable asset exceptions


class TaxableAssetError(TaxFlowKernelError):
    """Base exception for taxable asset errors."""

    code: str = "TAXABLE_ASSET_ERROR"


class AttributeValidationError(TaxableAssetError):
    """
    Attributes do not satisfy the asset type schema.

    Carries every violation message; the exception message joins them.
    """

    code: str = "ATTRIBUTE_VALIDATION_FAILED"

    def __init__(self, asset_type_name: str, violations: list[str]):
        self.asset_type_name = asset_type_name
        self.violations = list(violations)
        super().__init__(
            f"Invalid attributes for asset type '{asset_type_name}': "
            + " ".join(self.violations)
        )


class AssetTypeNotSetError(TaxableAssetError):
    """The taxable asset has no asset type to compute against."""

    code: str = "ASSET_TYPE_NOT_SET"

    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Taxable asset {asset_id} has no asset type")


# Formula exceptions


class FormulaError(TaxFlowKernelError):
    """Base exception for tax formula errors."""

    code: str = "FORMULA_ERROR"

    def __init__(self, expression: str, message: str):
        self.expression = expression
        self.rule_key: str | None = None
        super().__init__(message)


class FormulaSyntaxError(FormulaError):
    """The formula text cannot be parsed."""

    code: str = "FORMULA_SYNTAX_ERROR"

    def __init__(self, expression: str, reason: str, position: int = 0):
        self.reason = reason
        self.position = position
        super().__init__(
            expression,
            f"Syntax error at position {position}: {reason} (formula: {expression})",
        )


class UnboundVariableError(FormulaError):
    """The formula references variables that have no binding."""

    code: str = "UNBOUND_VARIABLE"

    def __init__(self, expression: str, names: list[str]):
        self.names = sorted(names)
        super().__init__(
            expression,
            f"Unbound variable(s) {', '.join(self.names)} in formula: {expression}",
        )


class FormulaEvaluationError(FormulaError):
    """The formula parsed but failed while evaluating."""

    code: str = "FORMULA_EVALUATION_ERROR"

    def __init__(self, expression: str, reason: str):
        self.reason = reason
        super().__init__(
            expression,
            f"Cannot evaluate formula ({reason}): {expression}",
        )
