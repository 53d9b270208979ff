"""Deterministic fee calculation engine driven by permit type fee rules."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from permitflow.fees.models import FeeEstimate, FeeLineItem, to_cents
from permitflow.permit_types.models import FeeRule, FeeRuleType, PermitTypeDefinition

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


def payload_decimal(payload: dict[str, Any], field_name: str | None) -> Decimal | None:
    """Read a numeric payload value. Absent or unparseable values give None."""
    if not field_name:
        return None
    value = payload.get(field_name)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "").lstrip("$").strip()
        if not value:
            return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    if not result.is_finite():
        return None
    return result


class FeeEngine:
    """Computes permit fees from a permit type's fee rules.

    Each rule contributes independently; the sum is rounded to cents once,
    after all rules have been applied.
    """

    def compute(
        self,
        fee_rules: Sequence[FeeRule],
        payload: dict[str, Any],
        permit_type_id: str | None = None,
    ) -> FeeEstimate:
        items: list[FeeLineItem] = []
        for rule in fee_rules:
            item = self._apply_rule(rule, payload)
            if item is not None:
                items.append(item)
        estimate = FeeEstimate(permit_type_id=permit_type_id, line_items=items)
        logger.debug(
            "Computed fees for %s: %s line item(s), total %s",
            permit_type_id or "<adhoc>", len(items), estimate.total,
        )
        return estimate

    def calculate(self, fee_rules: Sequence[FeeRule], payload: dict[str, Any]) -> Decimal:
        """Total fee rounded to two decimal places, never negative."""
        return self.compute(fee_rules, payload).total

    def compute_for_permit_type(
        self, definition: PermitTypeDefinition, payload: dict[str, Any]
    ) -> FeeEstimate:
        return self.compute(definition.fee_rules, payload, permit_type_id=definition.id)

    def _apply_rule(self, rule: FeeRule, payload: dict[str, Any]) -> FeeLineItem | None:
        if rule.type == FeeRuleType.FIXED:
            return FeeLineItem(
                name=rule.name,
                amount=rule.amount or Decimal("0"),
                description=rule.description,
                rule_type=rule.type.value,
            )

        if rule.type == FeeRuleType.PERCENTAGE:
            base = payload_decimal(payload, rule.base_field)
            if base is None:
                return None
            return FeeLineItem(
                name=rule.name,
                amount=base * (rule.percentage or Decimal("0")) / _HUNDRED,
                description=rule.description or f"{rule.percentage}% of {rule.base_field}",
                rule_type=rule.type.value,
                basis=base,
            )

        if rule.type == FeeRuleType.PER_UNIT:
            units = payload_decimal(payload, rule.unit_field)
            if units is None:
                return None
            return FeeLineItem(
                name=rule.name,
                amount=units * (rule.unit_amount or Decimal("0")),
                description=rule.description or f"{units} x {to_cents(rule.unit_amount or Decimal('0'))}",
                rule_type=rule.type.value,
                basis=units,
            )

        if rule.type == FeeRuleType.TIERED:
            base = payload_decimal(payload, rule.base_field)
            if base is None:
                return None
            # Tiers are sorted by min when the rule is defined; first match wins.
            for tier in rule.tiers:
                if not tier.contains(base):
                    continue
                if tier.amount is not None:
                    amount = tier.amount
                else:
                    amount = base * (tier.percentage or Decimal("0")) / _HUNDRED
                return FeeLineItem(
                    name=rule.name,
                    amount=amount,
                    description=rule.description,
                    rule_type=rule.type.value,
                    basis=base,
                )
            return None

        raise ValueError(f"Unknown fee rule type: {rule.type!r}")
