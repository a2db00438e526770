"""
Redemption Coordinator.

Debits a member for a reward catalog entry exactly once per idempotency
key. Business rule failures (below minimum, insufficient balance) are
recorded against the key too, so a retried request always sees the
original outcome.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict

from flask import current_app

from ..models import IdempotencyRecord, LedgerReason
from ..utils.exceptions import (
    BelowMinimumRedemptionError,
    BusinessRuleViolation,
    ConflictReplay,
    InsufficientBalanceError,
    ValidationError,
)
from ..utils.retry import run_serialized
from .directory import BrandResolver, RewardCatalog
from .idempotency import IdempotencyStore, fingerprint
from .ledger_store import LedgerStore, check_client_key

OPERATION = 'redeem'


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a successful redemption."""
    member_key: str
    reward_id: str
    reward_name: str
    points_spent: int
    balance_after: int
    entry_id: int
    idempotency_key: str
    redeemed_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RedemptionResult':
        return cls(**data)


class RedemptionCoordinator:
    """
    Redemptions for one brand.

    Usage:
        coordinator = RedemptionCoordinator(brand_id)
        result = coordinator.redeem('alice@example.com', 'free-coffee', 'checkout-81')
    """

    def __init__(self, brand_id: str, store: LedgerStore = None):
        self.brand_id = brand_id
        self.store = store or LedgerStore(brand_id)
        self.idempotency = IdempotencyStore(brand_id)
        self.catalog = RewardCatalog(brand_id)

    def redeem(self, member_key: str, reward_id: str, idempotency_key: str) -> RedemptionResult:
        """
        Spend points on a reward.

        Raises:
            ValidationError: Missing key, or key reused for another request
            RewardNotFoundError: Unknown or inactive reward
            BelowMinimumRedemptionError / InsufficientBalanceError
            StorageError: Transient failure; retry with the same key
        """
        check_client_key(idempotency_key)
        if not reward_id:
            raise ValidationError("reward_id is required", field='reward_id')

        request_fingerprint = fingerprint(OPERATION, {'reward_id': reward_id})

        try:
            self.idempotency.check(member_key, idempotency_key, OPERATION, request_fingerprint)

            brand = BrandResolver().resolve(self.brand_id)
            reward = self.catalog.get_active(reward_id)
            minimum = brand.min_redemption_points or 0
            cost = reward.cost_points
            reward_name = reward.name

            def work() -> IdempotencyRecord:
                self.idempotency.check(member_key, idempotency_key, OPERATION, request_fingerprint)
                if self.store.find_by_idempotency_key(member_key, idempotency_key) is not None:
                    # Key already spent by an earn or adjustment for this member
                    raise ValidationError(
                        f"Idempotency key '{idempotency_key}' was already used for a different request",
                        field='idempotency_key',
                    )

                row = self.store.lock_balance(member_key, create=False)
                balance = row.balance if row else 0
                try:
                    if balance < minimum:
                        raise BelowMinimumRedemptionError(current=balance, minimum=minimum)
                    if balance < cost:
                        raise InsufficientBalanceError(current=balance, required=cost)
                except BusinessRuleViolation as e:
                    return self.idempotency.record_failure(
                        member_key, idempotency_key, OPERATION, request_fingerprint, e
                    )

                entry = self.store.append_locked(
                    member_key,
                    -cost,
                    LedgerReason.REDEEM,
                    reference_id=reward_id,
                    idempotency_key=idempotency_key,
                    description=f'Redeemed: {reward_name}',
                    row=row,
                )
                result = RedemptionResult(
                    member_key=member_key,
                    reward_id=reward_id,
                    reward_name=reward_name,
                    points_spent=cost,
                    balance_after=entry.balance_after,
                    entry_id=entry.entry_id,
                    idempotency_key=idempotency_key,
                    redeemed_at=entry.created_at.isoformat(),
                )
                return self.idempotency.record_success(
                    member_key, idempotency_key, OPERATION, request_fingerprint, result.to_dict()
                )

            record = run_serialized(self.brand_id, [member_key], work, operation=OPERATION)
        except ConflictReplay as replay:
            current_app.logger.info(
                f"[Ledger] Redemption replay for {self.brand_id}/{member_key} (key={idempotency_key})"
            )
            record = replay.record

        return RedemptionResult.from_dict(self.idempotency.resolve(record))
