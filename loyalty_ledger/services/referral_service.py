"""
Referral Engine.

- Codes are a deterministic HMAC of (brand_id, member_key) under the brand's
  salt, so issuing twice yields the same code and no collision-retry loop
  is needed.
- Applying a code credits referrer and referee in one transaction, holding
  both member locks (acquired in lexicographic order).
- A member can be referred at most once per brand and never by themselves.
"""
import hashlib
import hmac
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import IdempotencyRecord, LedgerReason, ReferralApplication, ReferralCode, ReferralProgram
from ..utils.clock import month_start, utcnow
from ..utils.exceptions import (
    AlreadyReferredError,
    BusinessRuleViolation,
    ConflictReplay,
    LedgerError,
    ReferralCodeNotFoundError,
    ReferralLimitReachedError,
    ReferralProgramInactiveError,
    SelfReferralError,
    StorageError,
    ValidationError,
)
from ..utils.retry import run_serialized
from .directory import BrandResolver
from .idempotency import IdempotencyStore, fingerprint
from .ledger_store import LedgerStore, referral_entry_key

OPERATION = 'referral_apply'

# Unambiguous alphabet: no 0/O, 1/I
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 12


@dataclass(frozen=True)
class ProgramTerms:
    """Effective referral program settings for a brand."""
    referrer_points: int
    referee_points: int
    monthly_referral_limit: Optional[int]
    is_active: bool


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of a successful referral application."""
    code: str
    referrer_member_key: str
    referred_member_key: str
    referrer_points: int
    referee_points: int
    referrer_entry_id: Optional[int]
    referee_entry_id: Optional[int]
    idempotency_key: str
    applied_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplyResult':
        return cls(**data)


def render_code(digest: bytes, prefix: str = 'R-') -> str:
    """Render the leading 60 bits of a digest as 12 alphabet symbols."""
    value = int.from_bytes(digest[:8], 'big') >> 4
    symbols = []
    for _ in range(CODE_LENGTH):
        symbols.append(CODE_ALPHABET[value & 0x1F])
        value >>= 5
    return prefix + ''.join(reversed(symbols))


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("referral code is required", field='code')
    normalized = code.strip().upper()
    if len(normalized) > 50:
        raise ValidationError("referral code is too long", field='code')
    return normalized


class ReferralEngine:
    """
    Referral codes and applications for one brand.

    Usage:
        engine = ReferralEngine(brand_id)
        code = engine.issue_code('alice@example.com')
        result = engine.apply(code, 'bob@example.com', 'signup-bob')
    """

    def __init__(self, brand_id: str, store: LedgerStore = None):
        self.brand_id = brand_id
        self.store = store or LedgerStore(brand_id)
        self.idempotency = IdempotencyStore(brand_id)

    # ==================== Configuration ====================

    def program_terms(self) -> ProgramTerms:
        program = ReferralProgram.query.filter_by(brand_id=self.brand_id).first()
        if program is None:
            return ProgramTerms(
                referrer_points=current_app.config.get('REFERRAL_REFERRER_POINTS', 100),
                referee_points=current_app.config.get('REFERRAL_REFEREE_POINTS', 50),
                monthly_referral_limit=None,
                is_active=True,
            )
        return ProgramTerms(
            referrer_points=program.referrer_points,
            referee_points=program.referee_points,
            monthly_referral_limit=program.monthly_referral_limit,
            is_active=program.is_active,
        )

    # ==================== Codes ====================

    def generate_code(self, member_key: str) -> str:
        """Deterministic code for a member; pure, no database writes."""
        brand = BrandResolver().resolve(self.brand_id)
        salt = brand.referral_salt or current_app.config['REFERRAL_CODE_SALT']
        message = f'{self.brand_id}:{member_key}'.encode('utf-8')
        digest = hmac.new(salt.encode('utf-8'), message, hashlib.sha256).digest()
        return render_code(digest, current_app.config.get('REFERRAL_CODE_PREFIX', 'R-'))

    def issue_code(self, member_key: str) -> str:
        """
        Return the member's referral code, creating the code row once.

        Raises:
            StorageError: The derived code already belongs to another member
        """
        existing = self._code_for_owner(member_key)
        if existing is not None:
            return existing.code

        code = self.generate_code(member_key)

        def work() -> str:
            existing = self._code_for_owner(member_key)
            if existing is not None:
                return existing.code

            clash = ReferralCode.query.filter_by(brand_id=self.brand_id, code=code).first()
            if clash is not None:
                raise StorageError(f"Referral code collision for {member_key}")

            db.session.add(ReferralCode(brand_id=self.brand_id, owner_member_key=member_key, code=code))
            db.session.flush()
            current_app.logger.info(f"[Ledger] Referral code {code} issued for {self.brand_id}/{member_key}")
            return code

        return run_serialized(self.brand_id, [member_key], work, operation='issue referral code')

    def _code_for_owner(self, member_key: str) -> Optional[ReferralCode]:
        return ReferralCode.query.filter_by(brand_id=self.brand_id, owner_member_key=member_key).first()

    def _resolve_code(self, code: str) -> ReferralCode:
        row = ReferralCode.query.filter_by(brand_id=self.brand_id, code=code).first()
        if row is None:
            raise ReferralCodeNotFoundError(code)
        return row

    # ==================== Rules ====================

    def _application_for(self, referred_member_key: str) -> Optional[ReferralApplication]:
        return ReferralApplication.query.filter_by(
            brand_id=self.brand_id,
            referred_member_key=referred_member_key,
        ).first()

    def _referrals_this_month(self, referrer_member_key: str) -> int:
        return ReferralApplication.query.filter(
            ReferralApplication.brand_id == self.brand_id,
            ReferralApplication.referrer_member_key == referrer_member_key,
            ReferralApplication.applied_at >= month_start(),
        ).count()

    def _check_program(self, terms: ProgramTerms) -> None:
        if not terms.is_active:
            raise ReferralProgramInactiveError(self.brand_id)

    def _check_limit(self, terms: ProgramTerms, referrer_member_key: str) -> None:
        if terms.monthly_referral_limit is None:
            return
        current = self._referrals_this_month(referrer_member_key)
        if current >= terms.monthly_referral_limit:
            raise ReferralLimitReachedError(limit=terms.monthly_referral_limit, current=current)

    def _check_not_referred(self, referred_member_key: str, code: str) -> None:
        if self._application_for(referred_member_key) is not None:
            raise AlreadyReferredError(member_key=referred_member_key, code=code)

    def check_code(self, code, referred_member_key: str = None) -> Dict[str, Any]:
        """
        Read-only pre-validation of a code, e.g. for a signup form.

        Returns:
            Dict with valid, reason (error code or None) and referee_points
        """
        terms = self.program_terms()
        try:
            code = normalize_code(code)
            owner = self._resolve_code(code).owner_member_key
            if referred_member_key is not None and owner == referred_member_key:
                raise SelfReferralError(referred_member_key)
            self._check_program(terms)
            self._check_limit(terms, owner)
            if referred_member_key is not None:
                self._check_not_referred(referred_member_key, code)
        except LedgerError as e:
            return {'valid': False, 'reason': e.code, 'referee_points': 0}

        return {'valid': True, 'reason': None, 'referee_points': terms.referee_points}

    # ==================== Apply ====================

    def apply(self, code, referred_member_key: str, idempotency_key: str) -> ApplyResult:
        """
        Apply a referral code for a referred member.

        Raises:
            ValidationError: Malformed code, missing key, or key reused
            ReferralCodeNotFoundError: Unknown code
            SelfReferralError, ReferralProgramInactiveError,
            ReferralLimitReachedError, AlreadyReferredError
            StorageError: Transient failure; retry with the same key
        """
        if not idempotency_key:
            raise ValidationError("idempotency_key is required", field='idempotency_key')
        code = normalize_code(code)
        request_fingerprint = fingerprint(OPERATION, {'code': code})

        try:
            self.idempotency.check(referred_member_key, idempotency_key, OPERATION, request_fingerprint)

            referrer_member_key = self._resolve_code(code).owner_member_key
            if referrer_member_key == referred_member_key:
                raise SelfReferralError(referred_member_key)

            terms = self.program_terms()
            self._check_program(terms)

            def work() -> IdempotencyRecord:
                self.idempotency.check(referred_member_key, idempotency_key, OPERATION, request_fingerprint)
                try:
                    self._check_limit(terms, referrer_member_key)
                    self._check_not_referred(referred_member_key, code)
                except BusinessRuleViolation as e:
                    return self.idempotency.record_failure(
                        referred_member_key, idempotency_key, OPERATION, request_fingerprint, e
                    )
                result = self._credit(code, referrer_member_key, referred_member_key, terms, idempotency_key)
                return self.idempotency.record_success(
                    referred_member_key, idempotency_key, OPERATION, request_fingerprint, result.to_dict()
                )

            record = run_serialized(
                self.brand_id,
                [referrer_member_key, referred_member_key],
                work,
                operation=OPERATION,
            )
        except ConflictReplay as replay:
            current_app.logger.info(
                f"[Ledger] Referral replay for {self.brand_id}/{referred_member_key} (key={idempotency_key})"
            )
            record = replay.record

        return ApplyResult.from_dict(self.idempotency.resolve(record))

    def _credit(self, code: str, referrer_member_key: str, referred_member_key: str,
                terms: ProgramTerms, idempotency_key: str) -> ApplyResult:
        now = utcnow()
        db.session.add(ReferralApplication(
            brand_id=self.brand_id,
            code=code,
            referrer_member_key=referrer_member_key,
            referred_member_key=referred_member_key,
            referrer_points=terms.referrer_points,
            referee_points=terms.referee_points,
            idempotency_key=idempotency_key,
            status='applied',
            applied_at=now,
        ))
        db.session.flush()

        # One bonus per referred member, so this key is unique on both sides
        entry_key = referral_entry_key(referred_member_key)
        referrer_entry = referee_entry = None
        if terms.referrer_points > 0:
            referrer_entry = self.store.append_locked(
                referrer_member_key,
                terms.referrer_points,
                LedgerReason.REFERRAL_BONUS,
                reference_id=code,
                idempotency_key=entry_key,
                description=f'Referral bonus: referred {referred_member_key}',
            )
        if terms.referee_points > 0:
            referee_entry = self.store.append_locked(
                referred_member_key,
                terms.referee_points,
                LedgerReason.REFERRAL_BONUS,
                reference_id=code,
                idempotency_key=entry_key,
                description=f'Referral bonus: joined with code {code}',
            )

        return ApplyResult(
            code=code,
            referrer_member_key=referrer_member_key,
            referred_member_key=referred_member_key,
            referrer_points=terms.referrer_points,
            referee_points=terms.referee_points,
            referrer_entry_id=referrer_entry.entry_id if referrer_entry else None,
            referee_entry_id=referee_entry.entry_id if referee_entry else None,
            idempotency_key=idempotency_key,
            applied_at=now.isoformat(),
        )

    # ==================== Stats ====================

    def referral_stats(self, member_key: str) -> Dict[str, Any]:
        code = self._code_for_owner(member_key)

        made, earned = db.session.query(
            func.count(ReferralApplication.id),
            func.coalesce(func.sum(ReferralApplication.referrer_points), 0),
        ).filter(
            ReferralApplication.brand_id == self.brand_id,
            ReferralApplication.referrer_member_key == member_key,
        ).one()

        received = self._application_for(member_key)

        return {
            'member_key': member_key,
            'code': code.code if code else None,
            'referrals_made': int(made),
            'points_earned_as_referrer': int(earned),
            'referred_by': received.referrer_member_key if received else None,
            'referred_with_code': received.code if received else None,
        }
