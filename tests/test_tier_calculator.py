"""
Tests for the Tier Calculator.

Thresholds (tiered_brand fixture):
    silver   >= 500   x1.25
    gold     >= 2000  x1.50
    platinum >= 5000  x2.00
"""
from datetime import timedelta
from decimal import Decimal

from loyalty_ledger.extensions import db
from loyalty_ledger.models import Brand, MemberBalance, TierChange, TierThreshold
from loyalty_ledger.services.ledger_store import LedgerStore
from loyalty_ledger.services.redemption_service import RedemptionCoordinator
from loyalty_ledger.services.tier_service import TierCalculator
from loyalty_ledger.utils.clock import utcnow

ALICE = 'alice@example.com'


def _raise_threshold(brand_id, tier_name, min_points):
    threshold = TierThreshold.query.filter_by(brand_id=brand_id, tier_name=tier_name).one()
    threshold.min_lifetime_points = min_points
    db.session.commit()


class TestTierFor:
    """Tests for TierCalculator.tier_for."""

    def test_untouched_member_is_base(self, app, tiered_brand):
        """Test an untouched member is in the base tier."""
        with app.app_context():
            assert TierCalculator(tiered_brand).tier_for(ALICE) == 'base'

    def test_brand_without_thresholds_is_base(self, app, brand_id):
        """Test a brand without thresholds keeps everyone base."""
        with app.app_context():
            LedgerStore(brand_id).append(ALICE, 10000, 'earn', idempotency_key='k1')
            assert TierCalculator(brand_id).tier_for(ALICE) == 'base'

    def test_base_tier_name_is_configurable(self, app, tiered_brand):
        """Test the base tier name comes from config."""
        app.config['BASE_TIER_NAME'] = 'member'
        with app.app_context():
            assert TierCalculator(tiered_brand).tier_for(ALICE) == 'member'

    def test_highest_threshold_reached(self, app, tiered_brand):
        """Test the highest reached threshold wins."""
        with app.app_context():
            store = LedgerStore(tiered_brand)
            tiers = TierCalculator(tiered_brand)

            store.append(ALICE, 499, 'earn', idempotency_key='k1')
            assert tiers.tier_for(ALICE) == 'base'

            store.append(ALICE, 1, 'earn', idempotency_key='k2')
            assert tiers.tier_for(ALICE) == 'silver'

            store.append(ALICE, 4500, 'referral_bonus', idempotency_key='k3')
            assert tiers.tier_for(ALICE) == 'platinum'


class TestUpgrades:
    """Upgrades happen as soon as an append crosses a threshold."""

    def test_upgrade_is_recorded(self, app, tiered_brand):
        """Test an upgrade is stored with its history row."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 2100, 'earn', idempotency_key='k1')

            row = MemberBalance.query.filter_by(brand_id=tiered_brand, member_key=ALICE).one()
            assert row.tier_name == 'gold'
            assert row.tier_achieved_at is not None

            history = TierCalculator(tiered_brand).tier_history(ALICE)
            assert len(history) == 1
            assert history[0].from_tier == 'base'
            assert history[0].to_tier == 'gold'
            assert history[0].change_type == 'upgrade'
            assert history[0].lifetime_earned == 2100

    def test_tier_history_newest_first(self, app, tiered_brand):
        """Test tier history is newest first."""
        with app.app_context():
            store = LedgerStore(tiered_brand)
            store.append(ALICE, 600, 'earn', idempotency_key='k1')
            store.append(ALICE, 1500, 'earn', idempotency_key='k2')

            history = TierCalculator(tiered_brand).tier_history(ALICE)
            assert [change.to_tier for change in history] == ['gold', 'silver']

    def test_adjustments_do_not_count_toward_tier(self, app, tiered_brand):
        """Test adjustments do not raise the tier."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 900, 'adjustment', idempotency_key='k1')
            assert TierCalculator(tiered_brand).tier_for(ALICE) == 'base'

    def test_spending_never_lowers_tier(self, app, tiered_brand):
        """Test redeeming points keeps the tier."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            RedemptionCoordinator(tiered_brand).redeem(ALICE, 'tote', 'checkout-1')

            assert LedgerStore(tiered_brand).balance(ALICE) == 100
            assert TierCalculator(tiered_brand).tier_for(ALICE) == 'silver'


class TestMultiplier:
    """Tests for TierCalculator.multiplier_for."""

    def test_base_multiplier(self, app, tiered_brand):
        """Test the base tier multiplier is one."""
        with app.app_context():
            assert TierCalculator(tiered_brand).multiplier_for(ALICE) == Decimal('1')

    def test_tier_multiplier(self, app, tiered_brand):
        """Test the multiplier follows the member's tier."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 2000, 'earn', idempotency_key='k1')
            assert TierCalculator(tiered_brand).multiplier_for(ALICE) == Decimal('1.5')

    def test_apply_multiplier_floors(self, app, tiered_brand):
        """Test multiplied points are floored."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 500, 'earn', idempotency_key='k1')
            row = MemberBalance.query.filter_by(brand_id=tiered_brand, member_key=ALICE).one()

            assert TierCalculator(tiered_brand).apply_multiplier(10, row) == 12
            assert TierCalculator(tiered_brand).apply_multiplier(10, None) == 10


class TestRecheck:
    """Tests for the periodic downgrade re-check."""

    def test_no_change_when_qualified(self, app, tiered_brand):
        """Test recheck leaves qualified members alone."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            result = TierCalculator(tiered_brand).recheck()

            assert result['checked'] == 1
            assert result['unchanged'] == 1
            assert result['downgraded'] == 0

    def test_downgrade_suppressed_inside_grace_window(self, app, tiered_brand):
        """Raised thresholds do not downgrade a recently achieved tier."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            _raise_threshold(tiered_brand, 'silver', 1000)

            tiers = TierCalculator(tiered_brand)
            assert tiers.tier_for(ALICE) == 'silver'

            result = tiers.recheck(now=utcnow() + timedelta(days=5))
            assert result['suppressed'] == [ALICE]
            assert tiers.tier_for(ALICE) == 'silver'

    def test_downgrade_after_grace_window(self, app, tiered_brand):
        """Test recheck downgrades once the grace window passes."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            _raise_threshold(tiered_brand, 'silver', 1000)

            tiers = TierCalculator(tiered_brand)
            result = tiers.recheck(now=utcnow() + timedelta(days=31))

            assert result['downgraded'] == 1
            assert tiers.tier_for(ALICE) == 'base'

            latest = tiers.tier_history(ALICE)[0]
            assert latest.change_type == 'downgrade'
            assert latest.from_tier == 'silver'
            assert latest.to_tier == 'base'

    def test_brand_grace_days_override(self, app, tiered_brand):
        """Test a brand grace period overrides the default."""
        with app.app_context():
            brand = db.session.get(Brand, tiered_brand)
            brand.tier_grace_days = 3
            db.session.commit()

            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            _raise_threshold(tiered_brand, 'silver', 1000)

            result = TierCalculator(tiered_brand).recheck(now=utcnow() + timedelta(days=5))
            assert result['downgraded'] == 1

    def test_removed_tier_downgrades_without_grace(self, app, tiered_brand):
        """Test a tier the brand removed is downgraded even inside the grace window."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 2100, 'earn', idempotency_key='k1')
            TierThreshold.query.filter_by(brand_id=tiered_brand, tier_name='gold').delete()
            db.session.commit()

            tiers = TierCalculator(tiered_brand)
            result = tiers.recheck()

            assert result['downgraded'] == 1
            assert result['upgraded'] == 0
            assert result['suppressed'] == []

            row = MemberBalance.query.filter_by(brand_id=tiered_brand, member_key=ALICE).one()
            assert row.tier_name == 'silver'

            latest = tiers.tier_history(ALICE)[0]
            assert latest.change_type == 'downgrade'
            assert latest.from_tier == 'gold'
            assert latest.to_tier == 'silver'

    def test_dry_run_changes_nothing(self, app, tiered_brand):
        """Test a dry run reports without changing tiers."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 600, 'earn', idempotency_key='k1')
            _raise_threshold(tiered_brand, 'silver', 1000)

            tiers = TierCalculator(tiered_brand)
            result = tiers.recheck(now=utcnow() + timedelta(days=31), dry_run=True)

            assert result['downgraded'] == 1
            assert tiers.tier_for(ALICE) == 'silver'
            assert TierChange.query.filter_by(change_type='downgrade').count() == 0

    def test_lowered_threshold_upgrades_on_recheck(self, app, tiered_brand):
        """Test recheck applies upgrades after thresholds drop."""
        with app.app_context():
            LedgerStore(tiered_brand).append(ALICE, 300, 'earn', idempotency_key='k1')
            _raise_threshold(tiered_brand, 'silver', 200)

            result = TierCalculator(tiered_brand).recheck()
            assert result['upgraded'] == 1

            row = MemberBalance.query.filter_by(brand_id=tiered_brand, member_key=ALICE).one()
            assert row.tier_name == 'silver'
