"""TaxRule -- a named formula producing a monetary contribution."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from taxflow_kernel.domain.clock import as_utc


@dataclass(eq=False)
class TaxRule:
    """
    A tax rule attached to an asset type.

    ``expression`` is formula text whose variables are attribute keys (see
    ``taxflow_kernel.domain.formula``). Key blankness and uniqueness are
    enforced when the rule is added to an asset type.
    """

    key: str
    label: str
    expression: str
    description: str | None = None
    enabled: bool = True
    valid_from: datetime | None = None
    valid_to: datetime | None = None

    def __post_init__(self):
        self.valid_from = as_utc(self.valid_from)
        self.valid_to = as_utc(self.valid_to)

    @classmethod
    def create(
        cls,
        key: str,
        label: str,
        expression: str,
        description: str | None = None,
        enabled: bool = True,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
    ) -> TaxRule:
        return cls(
            key=(key or "").strip(),
            label=(label or "").strip(),
            expression=(expression or "").strip(),
            description=description.strip() if description and description.strip() else None,
            enabled=enabled,
            valid_from=valid_from,
            valid_to=valid_to,
        )

    def is_effective(self, at: datetime) -> bool:
        at = as_utc(at)
        if self.valid_from is not None and self.valid_from > at:
            return False
        return self.valid_to is None or at <= self.valid_to

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False
