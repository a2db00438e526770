"""
Database models for the loyalty ledger.
"""
from .brand import Brand
from .ledger import LedgerEntry, LedgerReason, MemberBalance
from .rewards import RewardCatalogEntry
from .earn_rules import EarnRule
from .referral import ReferralProgram, ReferralCode, ReferralApplication
from .tiers import TierThreshold, TierChange
from .idempotency import IdempotencyRecord

__all__ = [
    'Brand',
    'LedgerEntry',
    'LedgerReason',
    'MemberBalance',
    'RewardCatalogEntry',
    'EarnRule',
    'ReferralProgram',
    'ReferralCode',
    'ReferralApplication',
    'TierThreshold',
    'TierChange',
    'IdempotencyRecord',
]
