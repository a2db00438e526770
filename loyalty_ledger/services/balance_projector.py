"""
Balance projection.

Keeps MemberBalance in step with the ledger: every appended entry is applied
to the member's row in the same transaction, under the member lock.
"""
from typing import Dict, Optional

from sqlalchemy import case, func

from ..extensions import db
from ..models import LedgerEntry, LedgerReason, MemberBalance

LIFETIME_REASONS = (LedgerReason.EARN.value, LedgerReason.REFERRAL_BONUS.value)


class BalanceProjector:
    """Applies ledger entries to the MemberBalance projection."""

    def __init__(self, brand_id: str):
        self.brand_id = brand_id

    def lock(self, member_key: str, create: bool = True) -> Optional[MemberBalance]:
        """
        Load a member's balance row with a row lock, creating it if needed.

        The row is always re-read from the database, never served from the
        session's identity map.
        """
        row = MemberBalance.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
        ).with_for_update().populate_existing().first()

        if row is None and create:
            row = MemberBalance(
                brand_id=self.brand_id,
                member_key=member_key,
                balance=0,
                lifetime_earned=0,
                lifetime_redeemed=0,
                last_entry_id=0,
            )
            db.session.add(row)
            db.session.flush()
        return row

    def get(self, member_key: str) -> Optional[MemberBalance]:
        """Unlocked read for queries."""
        return MemberBalance.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
        ).first()

    @staticmethod
    def apply(row: MemberBalance, entry: LedgerEntry) -> None:
        row.balance = entry.balance_after
        row.last_entry_id = entry.entry_id
        row.last_entry_at = entry.created_at

        reason = LedgerReason(entry.reason)
        if reason.counts_toward_lifetime and entry.delta > 0:
            row.lifetime_earned += entry.delta
        elif reason is LedgerReason.REDEEM:
            row.lifetime_redeemed += -entry.delta

    def ledger_totals(self, member_key: str = None) -> Dict[str, Dict[str, int]]:
        """
        Aggregate the ledger per member: the values the projection must hold.
        """
        lifetime = case(
            (LedgerEntry.reason.in_(LIFETIME_REASONS) & (LedgerEntry.delta > 0), LedgerEntry.delta),
            else_=0,
        )
        redeemed = case(
            (LedgerEntry.reason == LedgerReason.REDEEM.value, -LedgerEntry.delta),
            else_=0,
        )
        query = db.session.query(
            LedgerEntry.member_key,
            func.coalesce(func.sum(LedgerEntry.delta), 0),
            func.coalesce(func.sum(lifetime), 0),
            func.coalesce(func.sum(redeemed), 0),
            func.coalesce(func.max(LedgerEntry.entry_id), 0),
        ).filter(LedgerEntry.brand_id == self.brand_id)

        if member_key is not None:
            query = query.filter(LedgerEntry.member_key == member_key)

        totals = {}
        for key, balance, lifetime_earned, lifetime_redeemed, last_entry_id in query.group_by(LedgerEntry.member_key):
            totals[key] = {
                'balance': int(balance),
                'lifetime_earned': int(lifetime_earned),
                'lifetime_redeemed': int(lifetime_redeemed),
                'last_entry_id': int(last_entry_id),
            }
        return totals
