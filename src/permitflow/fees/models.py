"""Fee data models: line items and estimates."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel, Field

CENTS = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class FeeLineItem(BaseModel):
    """A single charge on a permit, produced by one fee rule."""

    name: str
    amount: Decimal
    description: str = ""
    rule_type: str | None = None
    basis: Decimal | None = None


class FeeEstimate(BaseModel):
    """Complete fee computation for one application payload.

    ``line_items`` carry unrounded amounts. ``total`` is the sum rounded to
    cents, never negative.
    """

    permit_type_id: str | None = None
    line_items: list[FeeLineItem] = Field(default_factory=list)
    total: Decimal = Decimal("0.00")
    computed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def model_post_init(self, __context: Any) -> None:
        if self.line_items and self.total == 0:
            subtotal = sum((i.amount for i in self.line_items), Decimal("0"))
            self.total = max(to_cents(subtotal), Decimal("0.00"))

    def apply_cap(self, cap: Decimal | None) -> FeeEstimate:
        """Return a copy whose total does not exceed ``cap``."""
        if cap is None or self.total <= cap:
            return self
        adjustment = FeeLineItem(
            name="Fee cap adjustment",
            amount=to_cents(cap) - self.total,
            description=f"Municipal fee limit of {to_cents(cap)}",
            rule_type="cap",
        )
        return self.model_copy(update={
            "line_items": [*self.line_items, adjustment],
            "total": to_cents(cap),
        })

    def to_permit_fees(self) -> list[FeeLineItem]:
        """Line items rounded to cents whose sum equals ``total`` exactly."""
        items = [i.model_copy(update={"amount": to_cents(i.amount)}) for i in self.line_items]
        drift = self.total - sum((i.amount for i in items), Decimal("0.00"))
        if drift:
            items.append(FeeLineItem(
                name="Rounding adjustment",
                amount=drift,
                rule_type="rounding",
            ))
        return items
