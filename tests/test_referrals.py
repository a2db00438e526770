"""
Tests for the Referral Engine.

Covers:
- Deterministic code issuing
- Applying codes (bonuses, self-referral, double application)
- Program settings (inactive, monthly limit)
- Pre-validation and stats
"""
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from loyalty_ledger.extensions import db
from loyalty_ledger.models import (
    Brand,
    IdempotencyRecord,
    LedgerEntry,
    ReferralApplication,
    ReferralCode,
    ReferralProgram,
)
from loyalty_ledger.services.ledger_store import LedgerStore
from loyalty_ledger.services.referral_service import CODE_ALPHABET, ApplyResult, ReferralEngine, render_code
from loyalty_ledger.utils.exceptions import (
    AlreadyReferredError,
    BusinessRule,
    ReferralCodeNotFoundError,
    ReferralLimitReachedError,
    ReferralProgramInactiveError,
    SelfReferralError,
    StorageError,
    ValidationError,
)

ALICE = 'alice@example.com'
BOB = 'bob@example.com'
CAROL = 'carol@example.com'


class TestIssueCode:
    """Tests for ReferralEngine.issue_code."""

    def test_code_format(self, app, brand_id):
        """Test codes use the prefix and alphabet."""
        with app.app_context():
            code = ReferralEngine(brand_id).issue_code(ALICE)

            assert code.startswith('R-')
            assert len(code) == 14
            assert all(symbol in CODE_ALPHABET for symbol in code[2:])

    def test_issue_twice_returns_same_code(self, app, brand_id):
        """Test issuing twice returns the same code."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            assert engine.issue_code(ALICE) == engine.issue_code(ALICE)
            assert ReferralCode.query.filter_by(brand_id=brand_id, owner_member_key=ALICE).count() == 1

    def test_code_is_deterministic_without_row(self, app, brand_id):
        """Deleting the row and issuing again derives the same code."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)
            ReferralCode.query.filter_by(brand_id=brand_id).delete()
            db.session.commit()

            assert engine.issue_code(ALICE) == code

    def test_codes_differ_per_member_and_brand(self, app, brand_id):
        """Test codes differ across members and brands."""
        with app.app_context():
            alice_acme = ReferralEngine(brand_id).issue_code(ALICE)
            bob_acme = ReferralEngine(brand_id).issue_code(BOB)
            alice_globex = ReferralEngine('globex').issue_code(ALICE)

            assert len({alice_acme, bob_acme, alice_globex}) == 3

    def test_brand_salt_changes_code(self, app, brand_id):
        """Test a brand salt changes the derived code."""
        with app.app_context():
            before = ReferralEngine(brand_id).generate_code(ALICE)
            brand = db.session.get(Brand, brand_id)
            brand.referral_salt = 'acme-private-salt'
            db.session.commit()

            assert ReferralEngine(brand_id).generate_code(ALICE) != before

    def test_issue_has_no_ledger_effect(self, app, brand_id):
        """Test issuing a code writes no ledger entries."""
        with app.app_context():
            ReferralEngine(brand_id).issue_code(ALICE)
            assert LedgerStore(brand_id).history(ALICE) == []

    def test_render_code_uses_alphabet(self):
        """Test code rendering from a known digest."""
        code = render_code(bytes(range(32)), prefix='X-')
        assert code.startswith('X-')
        assert len(code) == 14
        assert set(code[2:]) <= set(CODE_ALPHABET)


class TestApply:
    """Tests for ReferralEngine.apply."""

    def test_apply_credits_both_members(self, app, brand_id):
        """Alice's code applied by Bob: Alice +100, Bob +50, one application."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            result = engine.apply(code, BOB, 'signup-bob')

            assert isinstance(result, ApplyResult)
            assert result.referrer_member_key == ALICE
            assert result.referred_member_key == BOB
            assert result.referrer_points == 100
            assert result.referee_points == 50

            store = LedgerStore(brand_id)
            assert store.balance(ALICE) == 100
            assert store.balance(BOB) == 50
            assert store.history(BOB)[0].reason == 'referral_bonus'
            assert ReferralApplication.query.filter_by(brand_id=brand_id).count() == 1

    def test_code_is_normalized(self, app, brand_id):
        """Test codes are matched case-insensitively."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            result = engine.apply(f'  {code.lower()} ', BOB, 'signup-bob')
            assert result.code == code

    def test_self_referral_rejected(self, app, brand_id):
        """Test a member cannot apply their own code."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            with pytest.raises(SelfReferralError) as exc_info:
                engine.apply(code, ALICE, 'self')

            assert exc_info.value.rule == BusinessRule.SELF_REFERRAL
            assert LedgerStore(brand_id).balance(ALICE) == 0

    def test_second_application_rejected(self, app, brand_id):
        """Bob re-applying any code fails and balances stay unchanged."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            alice_code = engine.issue_code(ALICE)
            carol_code = engine.issue_code(CAROL)
            engine.apply(alice_code, BOB, 'signup-bob')

            with pytest.raises(AlreadyReferredError):
                engine.apply(alice_code, BOB, 'signup-bob-again')
            with pytest.raises(AlreadyReferredError):
                engine.apply(carol_code, BOB, 'signup-bob-carol')

            store = LedgerStore(brand_id)
            assert store.balance(ALICE) == 100
            assert store.balance(BOB) == 50
            assert store.balance(CAROL) == 0

    def test_original_key_replays_success(self, app, brand_id):
        """Test the original key replays a successful apply."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            first = engine.apply(code, BOB, 'signup-bob')
            second = engine.apply(code, BOB, 'signup-bob')

            assert first == second
            assert LedgerStore(brand_id).balance(ALICE) == 100

    def test_original_key_with_other_code_rejected(self, app, brand_id):
        """Test the original key with another code is rejected."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            engine.apply(engine.issue_code(ALICE), BOB, 'signup-bob')

            with pytest.raises(ValidationError):
                engine.apply(engine.issue_code(CAROL), BOB, 'signup-bob')

    def test_bonus_key_namespace_closed_to_clients(self, app, brand_id):
        """Test a client append cannot take the key a referral bonus needs."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            with pytest.raises(ValidationError) as exc_info:
                LedgerStore(brand_id).append(ALICE, 10, 'earn', idempotency_key=f'referral:{BOB}')
            assert exc_info.value.field == 'idempotency_key'

            engine.apply(code, BOB, 'signup-bob')
            assert LedgerStore(brand_id).balance(ALICE) == 100

    def test_apply_is_all_or_nothing(self, app, brand_id):
        """Test a failed referee credit rolls back the referrer credit and the application."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)
            credit = engine.store.append_locked

            def fail_for_referee(member_key, *args, **kwargs):
                if member_key == BOB:
                    raise OperationalError('INSERT INTO ledger_entries', {}, Exception('disk I/O error'))
                return credit(member_key, *args, **kwargs)

            with patch.object(engine.store, 'append_locked', side_effect=fail_for_referee):
                with pytest.raises(StorageError):
                    engine.apply(code, BOB, 'signup-bob')

            store = LedgerStore(brand_id)
            assert store.balance(ALICE) == 0
            assert store.balance(BOB) == 0
            assert LedgerEntry.query.filter_by(brand_id=brand_id).count() == 0
            assert ReferralApplication.query.filter_by(brand_id=brand_id).count() == 0
            assert IdempotencyRecord.query.filter_by(brand_id=brand_id).count() == 0

            # Same key succeeds once the fault clears
            result = engine.apply(code, BOB, 'signup-bob')
            assert result.referee_points == 50
            assert store.balance(ALICE) == 100
            assert store.balance(BOB) == 50

    def test_unknown_code(self, app, brand_id):
        """Test applying an unknown code."""
        with app.app_context():
            with pytest.raises(ReferralCodeNotFoundError):
                ReferralEngine(brand_id).apply('R-NOPENOPENOPE', BOB, 'signup-bob')

    def test_code_from_other_brand_not_found(self, app, brand_id):
        """Test codes do not resolve across brands."""
        with app.app_context():
            code = ReferralEngine('globex').issue_code(ALICE)
            with pytest.raises(ReferralCodeNotFoundError):
                ReferralEngine(brand_id).apply(code, BOB, 'signup-bob')

    def test_blank_code_rejected(self, app, brand_id):
        """Test a blank code is rejected."""
        with app.app_context():
            with pytest.raises(ValidationError):
                ReferralEngine(brand_id).apply('   ', BOB, 'signup-bob')


class TestReferralProgram:
    """Per-brand program settings."""

    def test_program_points_override_defaults(self, app, referral_program):
        """Test program points override the configured defaults."""
        with app.app_context():
            engine = ReferralEngine(referral_program)
            result = engine.apply(engine.issue_code(ALICE), BOB, 'signup-bob')

            assert result.referrer_points == 200
            assert result.referee_points == 75
            assert LedgerStore(referral_program).balance(ALICE) == 200

    def test_inactive_program(self, app, referral_program):
        """Test applying a code while the program is inactive."""
        with app.app_context():
            program = ReferralProgram.query.filter_by(brand_id=referral_program).one()
            program.is_active = False
            db.session.commit()

            engine = ReferralEngine(referral_program)
            with pytest.raises(ReferralProgramInactiveError):
                engine.apply(engine.issue_code(ALICE), BOB, 'signup-bob')

    def test_monthly_limit(self, app, referral_program):
        """Limit of 2: the third referral this month is refused and recorded."""
        with app.app_context():
            engine = ReferralEngine(referral_program)
            code = engine.issue_code(ALICE)
            engine.apply(code, BOB, 'signup-bob')
            engine.apply(code, CAROL, 'signup-carol')

            with pytest.raises(ReferralLimitReachedError) as exc_info:
                engine.apply(code, 'dave@example.com', 'signup-dave')

            assert exc_info.value.details == {'limit': 2, 'current': 2}
            assert LedgerStore(referral_program).balance('dave@example.com') == 0

            with pytest.raises(ReferralLimitReachedError):
                engine.apply(code, 'dave@example.com', 'signup-dave')


class TestCheckCode:
    """Tests for ReferralEngine.check_code."""

    def test_valid_code(self, app, brand_id):
        """Test check_code accepts a usable code."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            result = engine.check_code(engine.issue_code(ALICE), BOB)

            assert result == {'valid': True, 'reason': None, 'referee_points': 50}

    def test_invalid_reasons(self, app, brand_id):
        """Test check_code reports why a code is unusable."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)

            assert engine.check_code('R-UNKNOWN')['reason'] == 'REFERRAL_CODE_NOT_FOUND'
            assert engine.check_code(code, ALICE)['reason'] == 'SELF_REFERRAL'

            engine.apply(code, BOB, 'signup-bob')
            assert engine.check_code(code, BOB)['reason'] == 'ALREADY_REFERRED'

    def test_check_code_writes_nothing(self, app, brand_id):
        """Test check_code has no side effects."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            engine.check_code(engine.issue_code(ALICE), BOB)

            assert ReferralApplication.query.count() == 0
            assert LedgerStore(brand_id).balance(BOB) == 0


class TestReferralStats:
    """Tests for ReferralEngine.referral_stats."""

    def test_stats(self, app, brand_id):
        """Test referral stats for both sides of a referral."""
        with app.app_context():
            engine = ReferralEngine(brand_id)
            code = engine.issue_code(ALICE)
            engine.apply(code, BOB, 'signup-bob')
            engine.apply(code, CAROL, 'signup-carol')

            alice = engine.referral_stats(ALICE)
            assert alice['code'] == code
            assert alice['referrals_made'] == 2
            assert alice['points_earned_as_referrer'] == 200
            assert alice['referred_by'] is None

            bob = engine.referral_stats(BOB)
            assert bob['code'] is None
            assert bob['referred_by'] == ALICE
            assert bob['referred_with_code'] == code
