"""
TaxFlow Kernel

Data-declared taxation of assets:
- Asset types declare their attribute schema and tax rules as data
- Attribute sets are validated against the schema before an asset exists
- Tax rules are formulas evaluated against the asset's effective attributes
- Every enabled rule yields exactly one tax line
"""

__version__ = "0.1.0"
