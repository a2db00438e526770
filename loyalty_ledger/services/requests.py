"""
Tagged request variants accepted by LoyaltyLedgerAPI.dispatch().

Each variant validates its own shape before any lookup or lock happens.
"""
from dataclasses import dataclass
from typing import Optional

from ..utils.exceptions import ValidationError

QUERY_KINDS = ('balance', 'history', 'tier', 'tier_history', 'referral_stats')


def _require_str(value, field: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)


def _require_int(value, field: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)


@dataclass(frozen=True)
class EarnRequest:
    brand_id: str
    member: str
    points: int
    idempotency_key: str
    reference_id: Optional[str] = None
    description: Optional[str] = None

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.member, 'member')
        _require_str(self.idempotency_key, 'idempotency_key')
        _require_int(self.points, 'points')
        if self.points <= 0:
            raise ValidationError("points must be positive", field='points')


@dataclass(frozen=True)
class AdjustRequest:
    brand_id: str
    member: str
    delta: int
    idempotency_key: str
    reason: Optional[str] = None

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.member, 'member')
        _require_str(self.idempotency_key, 'idempotency_key')
        _require_int(self.delta, 'delta')
        if self.delta == 0:
            raise ValidationError("delta must not be zero", field='delta')


@dataclass(frozen=True)
class RedeemRequest:
    brand_id: str
    member: str
    reward_id: str
    idempotency_key: str

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.member, 'member')
        _require_str(self.reward_id, 'reward_id')
        _require_str(self.idempotency_key, 'idempotency_key')


@dataclass(frozen=True)
class IssueCodeRequest:
    brand_id: str
    member: str

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.member, 'member')


@dataclass(frozen=True)
class ApplyCodeRequest:
    brand_id: str
    code: str
    referred_member: str
    idempotency_key: str

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.code, 'code')
        _require_str(self.referred_member, 'referred_member')
        _require_str(self.idempotency_key, 'idempotency_key')


@dataclass(frozen=True)
class QueryRequest:
    brand_id: str
    member: str
    query: str = 'balance'
    page: int = 1
    limit: Optional[int] = None

    def validate(self) -> None:
        _require_str(self.brand_id, 'brand_id')
        _require_str(self.member, 'member')
        if self.query not in QUERY_KINDS:
            raise ValidationError(
                f"query must be one of: {', '.join(QUERY_KINDS)}",
                field='query',
            )
        _require_int(self.page, 'page')
        if self.limit is not None:
            _require_int(self.limit, 'limit')
