"""
Tier Calculator.

Membership tier is derived from lifetime earned points against the brand's
tier thresholds:

- Upgrades apply immediately, when an append pushes lifetime earned points
  across a threshold.
- Spending never lowers a tier; lifetime earned points never decrease.
- Downgrades only happen in the periodic re-check (e.g. after a brand raises
  its thresholds), and not while the stored tier is inside its grace window.
"""
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app

from ..extensions import cache, db
from ..models import Brand, LedgerEntry, LedgerReason, MemberBalance, TierChange, TierThreshold
from ..utils.cache import cache_key
from ..utils.clock import utcnow
from ..utils.exceptions import LedgerError
from ..utils.retry import run_serialized
from .balance_projector import BalanceProjector

# (tier_name, min_lifetime_points, points_multiplier) ordered by threshold
Threshold = Tuple[str, int, str]

UPGRADE = 'upgrade'
DOWNGRADE = 'downgrade'


def load_thresholds(brand_id: str) -> Tuple[Threshold, ...]:
    """Brand thresholds, lowest first. Cached; thresholds are read-only config."""
    key = cache_key('tier_thresholds', brand_id=brand_id)
    thresholds = cache.get(key)
    if thresholds is not None:
        return thresholds

    rows = TierThreshold.query.filter_by(brand_id=brand_id).order_by(
        TierThreshold.min_lifetime_points.asc(),
        TierThreshold.id.asc(),
    ).all()
    thresholds = tuple(
        (row.tier_name, row.min_lifetime_points, str(row.points_multiplier or '1'))
        for row in rows
    )
    cache.set(key, thresholds, timeout=current_app.config.get('CONFIG_CACHE_TIMEOUT', 300))
    return thresholds


class TierCalculator:
    """
    Tier evaluation for one brand.

    Usage:
        tiers = TierCalculator(brand_id)
        tiers.tier_for('alice@example.com')      # 'gold'
        tiers.recheck()                           # periodic downgrade pass
    """

    def __init__(self, brand_id: str):
        self.brand_id = brand_id
        self.projector = BalanceProjector(brand_id)

    @property
    def base_tier(self) -> str:
        return current_app.config.get('BASE_TIER_NAME', 'base')

    @property
    def thresholds(self) -> Tuple[Threshold, ...]:
        return load_thresholds(self.brand_id)

    def _rank(self, tier_name: Optional[str]) -> int:
        """0 for the base tier or a tier the brand no longer defines."""
        for index, (name, _, _) in enumerate(self.thresholds, start=1):
            if name == tier_name:
                return index
        return 0

    def _is_defined(self, tier_name: Optional[str]) -> bool:
        return any(name == tier_name for name, _, _ in self.thresholds)

    def qualified_tier(self, lifetime_earned: int) -> str:
        """Highest tier whose threshold does not exceed lifetime_earned."""
        qualified = self.base_tier
        for name, min_points, _ in self.thresholds:
            if min_points <= lifetime_earned:
                qualified = name
        return qualified

    def effective_tier(self, stored_tier: Optional[str], lifetime_earned: int) -> str:
        qualified = self.qualified_tier(lifetime_earned)
        if self._is_defined(stored_tier) and self._rank(stored_tier) > self._rank(qualified):
            return stored_tier
        return qualified

    # ==================== Queries ====================

    def tier_for(self, member_key: str) -> str:
        row = self.projector.get(member_key)
        if row is None:
            return self.base_tier
        return self.effective_tier(row.tier_name, row.lifetime_earned)

    def multiplier_of(self, tier_name: Optional[str]) -> Decimal:
        for name, _, multiplier in self.thresholds:
            if name == tier_name:
                return Decimal(multiplier)
        return Decimal('1')

    def multiplier_for(self, member_key: str) -> Decimal:
        """Earn multiplier of the member's current tier."""
        return self.multiplier_of(self.tier_for(member_key))

    def apply_multiplier(self, points: int, row: Optional[MemberBalance]) -> int:
        """Points awarded for a base earn of ``points`` at the row's tier (floored)."""
        tier = self.base_tier if row is None else self.effective_tier(row.tier_name, row.lifetime_earned)
        awarded = Decimal(points) * self.multiplier_of(tier)
        return int(awarded.to_integral_value(rounding=ROUND_FLOOR))

    def tier_history(self, member_key: str) -> List[TierChange]:
        return TierChange.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
        ).order_by(TierChange.created_at.desc(), TierChange.id.desc()).all()

    # ==================== Ledger observer ====================

    def observe(self, row: MemberBalance, entry: LedgerEntry, now: datetime = None) -> Optional[TierChange]:
        """Upgrade immediately when an entry lifts lifetime earned across a threshold."""
        if entry.delta <= 0 or not LedgerReason(entry.reason).counts_toward_lifetime:
            return None

        qualified = self.qualified_tier(row.lifetime_earned)
        if self._rank(qualified) > self._rank(row.tier_name):
            return self._change(row, qualified, UPGRADE, now or entry.created_at)
        return None

    def _change(self, row: MemberBalance, to_tier: str, change_type: str, now: datetime) -> TierChange:
        change = TierChange(
            brand_id=self.brand_id,
            member_key=row.member_key,
            from_tier=row.tier_name or self.base_tier,
            to_tier=to_tier,
            change_type=change_type,
            lifetime_earned=row.lifetime_earned,
            created_at=now,
        )
        db.session.add(change)

        row.tier_name = to_tier
        row.tier_achieved_at = now

        current_app.logger.info(
            f"[Ledger] Tier {change_type} for {self.brand_id}/{row.member_key}: "
            f"{change.from_tier} -> {to_tier} (lifetime {row.lifetime_earned})"
        )
        return change

    # ==================== Periodic re-check ====================

    def grace_days(self) -> int:
        brand = db.session.get(Brand, self.brand_id)
        if brand is not None and brand.tier_grace_days is not None:
            return brand.tier_grace_days
        return current_app.config.get('TIER_DOWNGRADE_GRACE_DAYS', 30)

    def _decide(self, row: MemberBalance, now: datetime, grace: timedelta) -> Tuple[str, Optional[str]]:
        """
        Decide what the re-check should do with one member.

        Returns (action, target_tier) where action is one of
        upgrade, downgrade, suppressed, unchanged.
        """
        stored = row.tier_name or self.base_tier
        qualified = self.qualified_tier(row.lifetime_earned)

        if stored == qualified:
            return 'unchanged', None

        if not self._is_defined(stored) and stored != self.base_tier:
            # Stored tier was removed from the brand's ladder; no grace applies
            return DOWNGRADE, qualified

        if self._rank(qualified) > self._rank(stored):
            return UPGRADE, qualified

        if self._rank(stored) > self._rank(qualified):
            if row.tier_achieved_at and now - row.tier_achieved_at < grace:
                return 'suppressed', None
            return DOWNGRADE, qualified

        return 'unchanged', None

    def recheck(self, now: datetime = None, dry_run: bool = False) -> Dict[str, Any]:
        """
        Re-evaluate every member of the brand.

        Should be run periodically (e.g., daily cron job via ``flask tiers recheck``).

        Returns:
            Dict with counts per outcome and the members whose downgrade
            was suppressed by the grace window
        """
        now = now or utcnow()
        grace = timedelta(days=self.grace_days())

        results = {
            'checked': 0,
            'upgraded': 0,
            'downgraded': 0,
            'suppressed': [],
            'unchanged': 0,
            'errors': 0,
            'dry_run': dry_run,
        }

        member_keys = [
            key for (key,) in db.session.query(MemberBalance.member_key).filter(
                MemberBalance.brand_id == self.brand_id
            ).order_by(MemberBalance.member_key).all()
        ]

        for member_key in member_keys:
            results['checked'] += 1
            try:
                if dry_run:
                    action, _ = self._decide(self.projector.get(member_key), now, grace)
                else:
                    action = run_serialized(
                        self.brand_id,
                        [member_key],
                        lambda: self._recheck_member(member_key, now, grace),
                        operation='tier recheck',
                    )
            except LedgerError as e:
                current_app.logger.error(f'Tier recheck failed for {self.brand_id}/{member_key}: {e}')
                results['errors'] += 1
                continue

            if action == UPGRADE:
                results['upgraded'] += 1
            elif action == DOWNGRADE:
                results['downgraded'] += 1
            elif action == 'suppressed':
                results['suppressed'].append(member_key)
                current_app.logger.info(
                    f'[Ledger] Downgrade suppressed for {self.brand_id}/{member_key} (grace window)'
                )
            else:
                results['unchanged'] += 1

        current_app.logger.info(
            f"[Ledger] Tier recheck for {self.brand_id}: checked={results['checked']} "
            f"upgraded={results['upgraded']} downgraded={results['downgraded']} "
            f"suppressed={len(results['suppressed'])} errors={results['errors']}"
        )
        return results

    def _recheck_member(self, member_key: str, now: datetime, grace: timedelta) -> str:
        row = self.projector.lock(member_key, create=False)
        action, target = self._decide(row, now, grace)
        if action in (UPGRADE, DOWNGRADE):
            self._change(row, target, action, now)
            db.session.flush()
        return action
