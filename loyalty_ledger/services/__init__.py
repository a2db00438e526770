"""
Ledger services.

Each service is bound to one brand; nothing here reads or writes across
a brand boundary.
"""
from .directory import BrandResolver, MemberDirectory, RewardCatalog
from .ledger_store import LedgerStore
from .balance_projector import BalanceProjector
from .tier_service import TierCalculator
from .points_calculator import PointsCalculator
from .redemption_service import RedemptionCoordinator, RedemptionResult
from .referral_service import ReferralEngine, ApplyResult
from .ledger_api import LoyaltyLedgerAPI

__all__ = [
    'BrandResolver',
    'MemberDirectory',
    'RewardCatalog',
    'LedgerStore',
    'BalanceProjector',
    'TierCalculator',
    'PointsCalculator',
    'RedemptionCoordinator',
    'RedemptionResult',
    'ReferralEngine',
    'ApplyResult',
    'LoyaltyLedgerAPI',
]
