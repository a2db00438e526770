"""
LoyaltyLedgerAPI - the entry point the HTTP layer calls.

Every operation is scoped by (brand_id, member). The brand is resolved and
the member identity normalized before any ledger work; mutating operations
then run through the Ledger Store, which the projection and the Tier
Calculator observe before the result is returned.

Usage:
    api = LoyaltyLedgerAPI()
    api.earn('acme', 'Alice@Example.com', 120, 'order-1001')
    api.redeem('acme', 'alice@example.com', 'free-coffee', 'checkout-81')
    api.calculate_points('acme', Decimal('42.50'), 'alice@example.com')
    api.dispatch(QueryRequest('acme', 'alice@example.com', 'history'))
"""
from typing import Any, Dict, List

from flask import current_app

from ..models import LedgerEntry, LedgerReason, TierChange
from ..utils.exceptions import ValidationError
from ..utils.retry import run_serialized
from .directory import BrandResolver, MemberDirectory
from .ledger_store import LedgerStore, check_client_key
from .points_calculator import PointsCalculator
from .redemption_service import RedemptionCoordinator, RedemptionResult
from .referral_service import ApplyResult, ReferralEngine
from .requests import (
    AdjustRequest,
    ApplyCodeRequest,
    EarnRequest,
    IssueCodeRequest,
    QueryRequest,
    RedeemRequest,
)
from .tier_service import TierCalculator


class LoyaltyLedgerAPI:
    """Facade over the ledger services."""

    def __init__(self, brands: BrandResolver = None, members: MemberDirectory = None):
        self.brands = brands or BrandResolver()
        self.members = members or MemberDirectory()
        self._handlers = {
            EarnRequest: self._earn,
            AdjustRequest: self._adjust,
            RedeemRequest: self._redeem,
            IssueCodeRequest: self._issue_code,
            ApplyCodeRequest: self._apply_code,
            QueryRequest: self._query,
        }

    def _scope(self, brand_id: str, member: str):
        """Resolve the brand and normalize the member; raises before any lock."""
        brand = self.brands.resolve(brand_id)
        return brand.id, self.members.normalize(member)

    def dispatch(self, request):
        """
        Execute a tagged request variant.

        Raises:
            ValidationError: Unknown variant or invalid fields
        """
        handler = self._handlers.get(type(request))
        if handler is None:
            raise ValidationError(f"Unsupported request type: {type(request).__name__}", field='request')
        request.validate()
        return handler(request)

    def resolve_brand(self, host: str) -> str:
        """brand_id for a storefront host."""
        return self.brands.resolve_host(host).id

    # ==================== Points ====================

    def balance(self, brand_id: str, member: str) -> int:
        return self.dispatch(QueryRequest(brand_id, member, 'balance'))

    def history(self, brand_id: str, member: str, page: int = 1, limit: int = None) -> List[LedgerEntry]:
        return self.dispatch(QueryRequest(brand_id, member, 'history', page=page, limit=limit))

    def earn(self, brand_id: str, member: str, points: int, idempotency_key: str,
             reference_id: str = None, description: str = None) -> LedgerEntry:
        return self.dispatch(EarnRequest(brand_id, member, points, idempotency_key, reference_id, description))

    def adjust(self, brand_id: str, member: str, delta: int, idempotency_key: str,
               reason: str = None) -> LedgerEntry:
        return self.dispatch(AdjustRequest(brand_id, member, delta, idempotency_key, reason))

    def redeem(self, brand_id: str, member: str, reward_id: str, idempotency_key: str) -> RedemptionResult:
        return self.dispatch(RedeemRequest(brand_id, member, reward_id, idempotency_key))

    def calculate_points(self, brand_id: str, order_amount, member: str = None) -> Dict[str, Any]:
        """Read-only quote of the points an order would earn; no ledger effect."""
        brand = self.brands.resolve(brand_id)
        member_key = self.members.normalize(member) if member is not None else None
        return PointsCalculator(brand.id).calculate(order_amount, member_key)

    # ==================== Referrals ====================

    def referral_code(self, brand_id: str, member: str) -> str:
        return self.dispatch(IssueCodeRequest(brand_id, member))

    def referral_stats(self, brand_id: str, member: str) -> Dict[str, Any]:
        return self.dispatch(QueryRequest(brand_id, member, 'referral_stats'))

    def check_referral_code(self, brand_id: str, code: str, member: str = None) -> Dict[str, Any]:
        brand = self.brands.resolve(brand_id)
        member_key = self.members.normalize(member) if member is not None else None
        return ReferralEngine(brand.id).check_code(code, member_key)

    def referral_apply(self, brand_id: str, code: str, referred_member: str,
                       idempotency_key: str) -> ApplyResult:
        return self.dispatch(ApplyCodeRequest(brand_id, code, referred_member, idempotency_key))

    # ==================== Tiers ====================

    def tier(self, brand_id: str, member: str) -> str:
        return self.dispatch(QueryRequest(brand_id, member, 'tier'))

    def tier_history(self, brand_id: str, member: str) -> List[TierChange]:
        return self.dispatch(QueryRequest(brand_id, member, 'tier_history'))

    # ==================== Handlers ====================

    def _earn(self, request: EarnRequest) -> LedgerEntry:
        brand_id, member_key = self._scope(request.brand_id, request.member)
        check_client_key(request.idempotency_key)
        store = LedgerStore(brand_id)
        tiers = TierCalculator(brand_id)

        existing = store.find_by_idempotency_key(member_key, request.idempotency_key)
        if existing is not None:
            return store.replayed(existing, LedgerReason.EARN)

        def work() -> LedgerEntry:
            existing = store.find_by_idempotency_key(member_key, request.idempotency_key)
            if existing is not None:
                return store.replayed(existing, LedgerReason.EARN)
            store.ensure_key_unclaimed(member_key, request.idempotency_key)

            row = store.lock_balance(member_key)
            awarded = tiers.apply_multiplier(request.points, row)
            if awarded <= 0:
                raise ValidationError("points too small after tier multiplier", field='points')
            if awarded != request.points:
                current_app.logger.debug(
                    f"[Ledger] Tier multiplier for {brand_id}/{member_key}: {request.points} -> {awarded}"
                )
            return store.append_locked(
                member_key,
                awarded,
                LedgerReason.EARN,
                reference_id=request.reference_id,
                idempotency_key=request.idempotency_key,
                description=request.description,
                row=row,
            )

        return run_serialized(brand_id, [member_key], work, operation='earn')

    def _adjust(self, request: AdjustRequest) -> LedgerEntry:
        brand_id, member_key = self._scope(request.brand_id, request.member)
        return LedgerStore(brand_id).append(
            member_key,
            request.delta,
            LedgerReason.ADJUSTMENT,
            idempotency_key=request.idempotency_key,
            description=request.reason,
        )

    def _redeem(self, request: RedeemRequest) -> RedemptionResult:
        brand_id, member_key = self._scope(request.brand_id, request.member)
        return RedemptionCoordinator(brand_id).redeem(member_key, request.reward_id, request.idempotency_key)

    def _issue_code(self, request: IssueCodeRequest) -> str:
        brand_id, member_key = self._scope(request.brand_id, request.member)
        return ReferralEngine(brand_id).issue_code(member_key)

    def _apply_code(self, request: ApplyCodeRequest) -> ApplyResult:
        brand_id, member_key = self._scope(request.brand_id, request.referred_member)
        return ReferralEngine(brand_id).apply(request.code, member_key, request.idempotency_key)

    def _query(self, request: QueryRequest):
        brand_id, member_key = self._scope(request.brand_id, request.member)

        if request.query == 'balance':
            return LedgerStore(brand_id).balance(member_key)
        if request.query == 'history':
            return LedgerStore(brand_id).history(member_key, request.page, request.limit)
        if request.query == 'tier':
            return TierCalculator(brand_id).tier_for(member_key)
        if request.query == 'tier_history':
            return TierCalculator(brand_id).tier_history(member_key)
        return ReferralEngine(brand_id).referral_stats(member_key)
