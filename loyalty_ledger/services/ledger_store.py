"""
Ledger Store.

Append-only, brand-partitioned record of point deltas and the source of
truth for every balance.

ARCHITECTURE:
- LedgerEntry rows are immutable; corrections are new adjustment entries
- MemberBalance is a projection updated in the same transaction as the
  entry, under the member lock and a row lock on the balance row
- Observers (the Tier Calculator) see every entry before the write commits
"""
from typing import Any, Dict, Iterator, List, Optional, Sequence

from flask import current_app

from ..extensions import db
from ..models import IdempotencyRecord, LedgerEntry, LedgerReason, MemberBalance
from ..utils.clock import utcnow
from ..utils.exceptions import InsufficientBalanceError, ValidationError
from ..utils.retry import run_serialized
from .balance_projector import BalanceProjector
from .tier_service import TierCalculator

PROJECTION_FIELDS = ('balance', 'lifetime_earned', 'lifetime_redeemed', 'last_entry_id')

# Keys under this prefix belong to referral bonus entries written by the
# Referral Engine; clients may not use them.
REFERRAL_KEY_PREFIX = 'referral:'


def referral_entry_key(referred_member_key: str) -> str:
    return f'{REFERRAL_KEY_PREFIX}{referred_member_key}'


def check_client_key(idempotency_key) -> None:
    """Reject missing keys and keys in the reserved referral namespace."""
    if not isinstance(idempotency_key, str) or not idempotency_key.strip():
        raise ValidationError("idempotency_key is required", field='idempotency_key')
    if idempotency_key.startswith(REFERRAL_KEY_PREFIX):
        raise ValidationError(
            f"idempotency_key may not start with '{REFERRAL_KEY_PREFIX}'",
            field='idempotency_key',
        )


def coerce_reason(reason) -> LedgerReason:
    try:
        return LedgerReason(reason)
    except ValueError:
        raise ValidationError(f"Unknown ledger reason: {reason!r}", field='reason')


def check_delta(delta, reason: LedgerReason) -> None:
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise ValidationError("delta must be an integer", field='delta')
    if not reason.check_delta(delta):
        raise ValidationError(
            f"delta {delta:+d} is not allowed for reason '{reason.value}'",
            field='delta',
        )


class LedgerStore:
    """
    Ledger access for one brand.

    Usage:
        store = LedgerStore(brand_id)
        entry = store.append('alice@example.com', 100, 'earn', 'order-1', 'earn:order-1')
        store.balance('alice@example.com')   # 100
    """

    def __init__(self, brand_id: str, observers: Sequence = None):
        self.brand_id = brand_id
        self.projector = BalanceProjector(brand_id)
        self.observers = list(observers) if observers is not None else [TierCalculator(brand_id)]

    # ==================== Writes ====================

    def append(
        self,
        member_key: str,
        delta: int,
        reason,
        reference_id: str = None,
        idempotency_key: str = None,
        description: str = None,
    ) -> LedgerEntry:
        """
        Append one entry for a member.

        A previously recorded idempotency_key for this member returns the
        original entry without re-applying it.

        Raises:
            ValidationError: Missing or reserved idempotency key, unknown reason, bad sign
            InsufficientBalanceError: Delta would make the balance negative
            StorageError: The write could not be made durable
        """
        check_client_key(idempotency_key)
        reason = coerce_reason(reason)
        check_delta(delta, reason)

        existing = self.find_by_idempotency_key(member_key, idempotency_key)
        if existing is not None:
            return self.replayed(existing, reason)

        def work():
            existing = self.find_by_idempotency_key(member_key, idempotency_key)
            if existing is not None:
                return self.replayed(existing, reason)
            self.ensure_key_unclaimed(member_key, idempotency_key)
            return self.append_locked(
                member_key, delta, reason,
                reference_id=reference_id,
                idempotency_key=idempotency_key,
                description=description,
            )

        return run_serialized(self.brand_id, [member_key], work, operation=f'{reason.value} append')

    def replayed(self, entry: LedgerEntry, reason: LedgerReason) -> LedgerEntry:
        if entry.reason != reason.value:
            raise ValidationError(
                f"Idempotency key '{entry.idempotency_key}' was already used for a different request",
                field='idempotency_key',
            )
        current_app.logger.info(
            f"[Ledger] Replay for {self.brand_id}/{entry.member_key} "
            f"(key={entry.idempotency_key}) -> entry #{entry.entry_id}"
        )
        return entry

    def ensure_key_unclaimed(self, member_key: str, idempotency_key: str) -> None:
        """Raise if a redemption or referral already resolved this key."""
        claimed = IdempotencyRecord.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
            idempotency_key=idempotency_key,
        ).first()
        if claimed is not None:
            raise ValidationError(
                f"Idempotency key '{idempotency_key}' was already used for a different request",
                field='idempotency_key',
            )

    def append_locked(
        self,
        member_key: str,
        delta: int,
        reason: LedgerReason,
        reference_id: str = None,
        idempotency_key: str = None,
        description: str = None,
        row: Optional[MemberBalance] = None,
    ) -> LedgerEntry:
        """
        Append inside an already-serialized unit of work.

        Callers must hold the member lock (see run_serialized). Nothing is
        committed here.
        """
        if row is None:
            row = self.projector.lock(member_key)

        new_balance = row.balance + delta
        if new_balance < 0:
            raise InsufficientBalanceError(current=row.balance, required=-delta)

        now = utcnow()
        entry = LedgerEntry(
            brand_id=self.brand_id,
            member_key=member_key,
            entry_id=row.last_entry_id + 1,
            delta=delta,
            reason=reason.value,
            reference_id=reference_id,
            idempotency_key=idempotency_key,
            balance_after=new_balance,
            description=description,
            created_at=now,
        )
        db.session.add(entry)

        self.projector.apply(row, entry)
        for observer in self.observers:
            observer.observe(row, entry, now)

        db.session.flush()

        current_app.logger.info(
            f"[Ledger] {reason.value} {delta:+d} for {self.brand_id}/{member_key} "
            f"-> balance {new_balance} (entry #{entry.entry_id})"
        )
        return entry

    def lock_balance(self, member_key: str, create: bool = True) -> Optional[MemberBalance]:
        return self.projector.lock(member_key, create=create)

    # ==================== Reads ====================

    def find_by_idempotency_key(self, member_key: str, idempotency_key: str) -> Optional[LedgerEntry]:
        return LedgerEntry.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
            idempotency_key=idempotency_key,
        ).first()

    def balance(self, member_key: str) -> int:
        row = self.projector.get(member_key)
        return row.balance if row else 0

    def history(self, member_key: str, page: int = 1, limit: int = None) -> List[LedgerEntry]:
        """
        Entries newest first.

        Returns an empty list for unknown members or pages past the end.
        """
        max_limit = current_app.config.get('HISTORY_MAX_LIMIT', 100)
        if limit is None:
            limit = current_app.config.get('HISTORY_DEFAULT_LIMIT', 50)

        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise ValidationError("page must be >= 1", field='page')
        if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= max_limit:
            raise ValidationError(f"limit must be between 1 and {max_limit}", field='limit')

        return LedgerEntry.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
        ).order_by(LedgerEntry.entry_id.desc()).offset((page - 1) * limit).limit(limit).all()

    def iter_history(self, member_key: str, page_size: int = 50,
                     before_entry_id: int = None) -> Iterator[LedgerEntry]:
        """
        Lazily walk a member's entries newest first.

        Restartable: pass the last seen entry_id as ``before_entry_id`` to
        resume below it.
        """
        if page_size < 1:
            raise ValidationError("page_size must be >= 1", field='page_size')

        cursor = before_entry_id
        while True:
            query = LedgerEntry.query.filter_by(brand_id=self.brand_id, member_key=member_key)
            if cursor is not None:
                query = query.filter(LedgerEntry.entry_id < cursor)
            rows = query.order_by(LedgerEntry.entry_id.desc()).limit(page_size).all()

            yield from rows

            if len(rows) < page_size:
                return
            cursor = rows[-1].entry_id

    # ==================== Maintenance ====================

    def reconcile(self, member_key: str = None, fix: bool = False) -> List[Dict[str, Any]]:
        """
        Compare the balance projection with the ledger.

        With ``fix`` the projection is rewritten from the ledger; entries are
        never touched.

        Returns:
            One dict per mismatched member: cached values, ledger values and
            whether the projection was fixed
        """
        totals = self.projector.ledger_totals(member_key)

        rows = MemberBalance.query.filter_by(brand_id=self.brand_id)
        if member_key is not None:
            rows = rows.filter_by(member_key=member_key)
        cached = {row.member_key: row for row in rows.all()}

        empty = dict.fromkeys(PROJECTION_FIELDS, 0)
        mismatches = []
        for key in sorted(set(totals) | set(cached)):
            expected = totals.get(key, empty)
            row = cached.get(key)
            current = {field: getattr(row, field) for field in PROJECTION_FIELDS} if row else dict(empty)
            if current == expected:
                continue

            report = {'member_key': key, 'cached': current, 'ledger': expected, 'fixed': False}
            current_app.logger.warning(
                f"[Ledger] Projection mismatch for {self.brand_id}/{key}: cached={current} ledger={expected}"
            )
            if fix:
                run_serialized(self.brand_id, [key], lambda: self._rebuild_projection(key), operation='reconcile')
                report['fixed'] = True
            mismatches.append(report)

        return mismatches

    def _rebuild_projection(self, member_key: str) -> None:
        expected = self.projector.ledger_totals(member_key).get(member_key)
        if expected is None:
            expected = dict.fromkeys(PROJECTION_FIELDS, 0)

        row = self.projector.lock(member_key)
        for field, value in expected.items():
            setattr(row, field, value)
        db.session.flush()
        current_app.logger.info(f"[Ledger] Projection rebuilt for {self.brand_id}/{member_key}: {expected}")
