"""
Points ledger models.

LedgerEntry is the append-only source of truth; MemberBalance is the
projection read on every balance query and locked on every write.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class LedgerReason(str, Enum):
    """Why a ledger entry was written."""
    EARN = 'earn'
    REDEEM = 'redeem'
    REFERRAL_BONUS = 'referral_bonus'
    ADJUSTMENT = 'adjustment'

    @property
    def counts_toward_lifetime(self) -> bool:
        return self in (LedgerReason.EARN, LedgerReason.REFERRAL_BONUS)

    def check_delta(self, delta: int) -> bool:
        """Sign rule for this reason."""
        if self is LedgerReason.REDEEM:
            return delta < 0
        if self is LedgerReason.ADJUSTMENT:
            return delta != 0
        return delta > 0


class LedgerEntry(db.Model):
    """
    Immutable points delta for one member.

    entry_id counts from 1 per (brand_id, member_key). Entries are never
    updated or deleted; corrections are new adjustment entries.
    """
    __tablename__ = 'ledger_entries'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    member_key = db.Column(db.String(255), nullable=False)
    entry_id = db.Column(db.Integer, nullable=False)

    delta = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(30), nullable=False)
    reference_id = db.Column(db.String(100))
    idempotency_key = db.Column(db.String(255), nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'member_key', 'entry_id', name='uq_ledger_member_entry'),
        db.UniqueConstraint('brand_id', 'member_key', 'idempotency_key', name='uq_ledger_member_idem'),
        db.Index('ix_ledger_brand_reason', 'brand_id', 'reason'),
    )

    def __repr__(self):
        return f'<LedgerEntry {self.brand_id}/{self.member_key}#{self.entry_id}: {self.delta:+d}>'

    def to_dict(self):
        return {
            'entry_id': self.entry_id,
            'member_key': self.member_key,
            'delta': self.delta,
            'reason': self.reason,
            'reference_id': self.reference_id,
            'idempotency_key': self.idempotency_key,
            'balance_after': self.balance_after,
            'description': self.description,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class MemberBalance(db.Model):
    """
    Current balance projection for one member.

    A row exists once the member's first entry is written; members without
    a row have a zero balance and the base tier.
    """
    __tablename__ = 'member_balances'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    member_key = db.Column(db.String(255), nullable=False)

    balance = db.Column(db.Integer, default=0, nullable=False)
    lifetime_earned = db.Column(db.Integer, default=0, nullable=False)
    lifetime_redeemed = db.Column(db.Integer, default=0, nullable=False)
    last_entry_id = db.Column(db.Integer, default=0, nullable=False)
    last_entry_at = db.Column(db.DateTime)

    tier_name = db.Column(db.String(50))
    tier_achieved_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'member_key', name='uq_balance_member'),
    )

    __mapper_args__ = {
        'version_id_col': version,
    }

    def __repr__(self):
        return f'<MemberBalance {self.brand_id}/{self.member_key}: {self.balance} pts>'

    def to_dict(self):
        return {
            'member_key': self.member_key,
            'balance': self.balance,
            'lifetime_earned': self.lifetime_earned,
            'lifetime_redeemed': self.lifetime_redeemed,
            'last_entry_id': self.last_entry_id,
            'tier': self.tier_name,
            'tier_achieved_at': self.tier_achieved_at.isoformat() if self.tier_achieved_at else None,
        }
