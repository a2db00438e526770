"""
Points Calculator.

Read-only quote of the points an order would earn: the brand's active
purchase rule gives the base points, and the member's tier multiplier is
applied on top exactly as it is for a real earn. Nothing is written.
"""
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any, Dict, Optional

from flask import current_app

from ..extensions import cache
from ..models import EarnRule
from ..utils.cache import cache_key
from ..utils.exceptions import ValidationError
from .tier_service import TierCalculator


def load_earn_rule(brand_id: str) -> Dict[str, Any]:
    """Highest-priority active purchase rule as a dict; empty when none. Cached."""
    key = cache_key('earn_rule', brand_id=brand_id)
    rule = cache.get(key)
    if rule is not None:
        return rule

    row = EarnRule.query.filter_by(
        brand_id=brand_id,
        rule_type='purchase',
        is_active=True,
    ).order_by(EarnRule.priority.desc(), EarnRule.id.asc()).first()

    rule = row.to_dict() if row else {}
    cache.set(key, rule, timeout=current_app.config.get('CONFIG_CACHE_TIMEOUT', 300))
    return rule


def coerce_amount(order_amount) -> Decimal:
    if isinstance(order_amount, bool) or order_amount is None:
        raise ValidationError("order_amount is required", field='order_amount')
    try:
        amount = Decimal(str(order_amount))
    except InvalidOperation:
        raise ValidationError(f"Invalid order_amount: {order_amount!r}", field='order_amount')
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("order_amount must be positive", field='order_amount')
    return amount


class PointsCalculator:
    """
    Points quotes for one brand.

    Usage:
        calculator = PointsCalculator(brand_id)
        calculator.calculate(Decimal('42.50'), 'alice@example.com')
        # {'points': 53, 'base_points': 42, 'multiplier': 1.25, 'tier': 'silver', ...}
    """

    def __init__(self, brand_id: str):
        self.brand_id = brand_id
        self.tiers = TierCalculator(brand_id)

    def calculate(self, order_amount, member_key: Optional[str] = None) -> Dict[str, Any]:
        """
        Points an order of ``order_amount`` would earn.

        Without a member the base tier applies.

        Raises:
            ValidationError: order_amount missing, malformed or not positive
        """
        amount = coerce_amount(order_amount)
        rule = load_earn_rule(self.brand_id)

        row = self.tiers.projector.get(member_key) if member_key else None
        tier = self.tiers.base_tier if row is None else self.tiers.effective_tier(row.tier_name, row.lifetime_earned)
        quote = {
            'points': 0,
            'base_points': 0,
            'multiplier': float(self.tiers.multiplier_of(tier)),
            'tier': tier,
            'rule_applied': rule.get('name'),
            'message': None,
        }

        if not rule:
            quote['message'] = 'No active earn rule'
            return quote

        minimum = rule.get('min_order_amount')
        if minimum is not None and amount < Decimal(minimum):
            quote['message'] = f'Minimum order amount is {minimum}'
            return quote

        if rule.get('points_per_dollar') is not None:
            base = int((amount * Decimal(rule['points_per_dollar'])).to_integral_value(rounding=ROUND_FLOOR))
        else:
            base = rule.get('fixed_points') or 0

        points = self.tiers.apply_multiplier(base, row)
        cap = rule.get('max_points_per_order')
        if cap is not None and points > cap:
            points = cap

        quote['base_points'] = base
        quote['points'] = points
        return quote
