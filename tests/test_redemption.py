"""
Tests for the Redemption Coordinator.
"""
import pytest

from loyalty_ledger.extensions import db
from loyalty_ledger.models import Brand, IdempotencyRecord, LedgerEntry
from loyalty_ledger.services.ledger_store import LedgerStore
from loyalty_ledger.services.redemption_service import RedemptionCoordinator, RedemptionResult
from loyalty_ledger.utils.exceptions import (
    BelowMinimumRedemptionError,
    BusinessRule,
    InsufficientBalanceError,
    RewardNotFoundError,
    ValidationError,
)

ALICE = 'alice@example.com'


def _fund(brand_id, member_key, points):
    LedgerStore(brand_id).append(member_key, points, 'earn', idempotency_key=f'fund-{points}')


class TestRedeem:
    """Tests for RedemptionCoordinator.redeem."""

    def test_redeem_debits_reward_cost(self, app, brand_id):
        """Test redeem debits the reward cost."""
        with app.app_context():
            _fund(brand_id, ALICE, 100)

            result = RedemptionCoordinator(brand_id).redeem(ALICE, 'coffee', 'checkout-1')

            assert isinstance(result, RedemptionResult)
            assert result.points_spent == 60
            assert result.balance_after == 40
            assert result.reward_name == 'Free Coffee'
            assert LedgerStore(brand_id).balance(ALICE) == 40

            entry = LedgerEntry.query.filter_by(brand_id=brand_id, member_key=ALICE, entry_id=result.entry_id).one()
            assert entry.reason == 'redeem'
            assert entry.delta == -60
            assert entry.reference_id == 'coffee'

    def test_redeem_is_idempotent(self, app, brand_id):
        """Same key, same result, one debit."""
        with app.app_context():
            _fund(brand_id, ALICE, 200)
            coordinator = RedemptionCoordinator(brand_id)

            first = coordinator.redeem(ALICE, 'coffee', 'checkout-1')
            second = coordinator.redeem(ALICE, 'coffee', 'checkout-1')

            assert first == second
            assert LedgerStore(brand_id).balance(ALICE) == 140
            assert LedgerEntry.query.filter_by(brand_id=brand_id, member_key=ALICE, reason='redeem').count() == 1

    def test_insufficient_balance_is_recorded(self, app, brand_id):
        """A failed redemption replays as the same failure, even after topping up."""
        with app.app_context():
            _fund(brand_id, ALICE, 50)
            coordinator = RedemptionCoordinator(brand_id)

            with pytest.raises(InsufficientBalanceError) as first:
                coordinator.redeem(ALICE, 'coffee', 'checkout-1')
            assert first.value.rule == BusinessRule.INSUFFICIENT_BALANCE
            assert first.value.details == {'current': 50, 'required': 60}

            _fund(brand_id, ALICE, 500)

            with pytest.raises(InsufficientBalanceError) as replay:
                coordinator.redeem(ALICE, 'coffee', 'checkout-1')
            assert replay.value.message == first.value.message

            assert LedgerStore(brand_id).balance(ALICE) == 550
            record = IdempotencyRecord.query.filter_by(brand_id=brand_id, idempotency_key='checkout-1').one()
            assert record.status == 'failed'
            assert record.error_code == 'INSUFFICIENT_BALANCE'

    def test_unknown_member_has_insufficient_balance(self, app, brand_id):
        """Test an unknown member cannot redeem."""
        with app.app_context():
            with pytest.raises(InsufficientBalanceError):
                RedemptionCoordinator(brand_id).redeem('new@example.com', 'coffee', 'checkout-1')

    def test_below_minimum_redemption(self, app, brand_id):
        """The brand floor takes precedence over the reward cost check."""
        with app.app_context():
            brand = db.session.get(Brand, brand_id)
            brand.min_redemption_points = 300
            db.session.commit()

            _fund(brand_id, ALICE, 100)

            with pytest.raises(BelowMinimumRedemptionError) as exc_info:
                RedemptionCoordinator(brand_id).redeem(ALICE, 'coffee', 'checkout-1')

            assert exc_info.value.rule == BusinessRule.BELOW_MINIMUM_REDEMPTION
            assert LedgerStore(brand_id).balance(ALICE) == 100

    def test_unknown_reward(self, app, brand_id):
        """Test redeeming an unknown reward."""
        with app.app_context():
            _fund(brand_id, ALICE, 100)
            with pytest.raises(RewardNotFoundError):
                RedemptionCoordinator(brand_id).redeem(ALICE, 'yacht', 'checkout-1')

    def test_inactive_reward(self, app, brand_id):
        """Test redeeming an inactive reward."""
        with app.app_context():
            _fund(brand_id, ALICE, 100)
            with pytest.raises(RewardNotFoundError):
                RedemptionCoordinator(brand_id).redeem(ALICE, 'retired', 'checkout-1')

    def test_reward_from_other_brand_not_visible(self, app, brand_id):
        """Rewards resolve within the member's brand only."""
        with app.app_context():
            LedgerStore('globex').append(ALICE, 100, 'earn', idempotency_key='fund')
            result = RedemptionCoordinator('globex').redeem(ALICE, 'coffee', 'checkout-1')

            assert result.points_spent == 30
            assert result.reward_name == 'Free Tea'

    def test_key_reused_for_different_reward_rejected(self, app, brand_id):
        """Test a key reused for another reward is rejected."""
        with app.app_context():
            _fund(brand_id, ALICE, 1000)
            coordinator = RedemptionCoordinator(brand_id)
            coordinator.redeem(ALICE, 'coffee', 'checkout-1')

            with pytest.raises(ValidationError) as exc_info:
                coordinator.redeem(ALICE, 'tote', 'checkout-1')

            assert exc_info.value.field == 'idempotency_key'
            assert LedgerStore(brand_id).balance(ALICE) == 940

    def test_key_already_used_by_earn_rejected(self, app, brand_id):
        """Test a key spent on an earn cannot be reused to redeem."""
        with app.app_context():
            LedgerStore(brand_id).append(ALICE, 100, 'earn', idempotency_key='k1')

            with pytest.raises(ValidationError) as exc_info:
                RedemptionCoordinator(brand_id).redeem(ALICE, 'coffee', 'k1')

            assert exc_info.value.field == 'idempotency_key'
            assert LedgerStore(brand_id).balance(ALICE) == 100
            assert IdempotencyRecord.query.filter_by(brand_id=brand_id, member_key=ALICE).count() == 0

    def test_earn_cannot_reuse_redeem_key(self, app, brand_id):
        """Test a key resolved by a redemption cannot be reused to earn."""
        with app.app_context():
            coordinator = RedemptionCoordinator(brand_id)
            with pytest.raises(InsufficientBalanceError):
                coordinator.redeem(ALICE, 'coffee', 'k1')

            with pytest.raises(ValidationError):
                LedgerStore(brand_id).append(ALICE, 100, 'earn', idempotency_key='k1')

            assert LedgerStore(brand_id).balance(ALICE) == 0

    def test_reserved_referral_key_rejected(self, app, brand_id):
        """Test keys in the referral bonus namespace are refused."""
        with app.app_context():
            _fund(brand_id, ALICE, 100)
            with pytest.raises(ValidationError):
                RedemptionCoordinator(brand_id).redeem(ALICE, 'coffee', 'referral:bob@example.com')

    def test_missing_key_rejected(self, app, brand_id):
        """Test redeem requires an idempotency key."""
        with app.app_context():
            with pytest.raises(ValidationError):
                RedemptionCoordinator(brand_id).redeem(ALICE, 'coffee', '')


class TestRedemptionResult:
    """Tests for RedemptionResult serialization."""

    def test_from_dict_restores_result(self):
        """Test a result survives to_dict and from_dict."""
        data = {
            'member_key': ALICE,
            'reward_id': 'coffee',
            'reward_name': 'Free Coffee',
            'points_spent': 60,
            'balance_after': 40,
            'entry_id': 2,
            'idempotency_key': 'checkout-1',
            'redeemed_at': '2026-01-01T00:00:00',
        }
        assert RedemptionResult.from_dict(data).to_dict() == data
