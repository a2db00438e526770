"""
Custom exceptions for ledger business logic.

Every error the core raises derives from LedgerError and carries a stable
``code`` so the HTTP layer can map it without string matching.
"""
from enum import Enum
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str, code: str = "LEDGER_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(LedgerError):
    """Invalid input data, rejected before touching the ledger."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class NotFoundError(LedgerError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        code = resource.upper().replace(' ', '_')
        super().__init__(message, f"{code}_NOT_FOUND")


class BrandNotFoundError(NotFoundError):
    """Unknown or inactive brand."""

    def __init__(self, identifier=None):
        super().__init__("Brand", identifier)


class RewardNotFoundError(NotFoundError):
    """Unknown or inactive reward."""

    def __init__(self, identifier=None):
        super().__init__("Reward", identifier)


class ReferralCodeNotFoundError(NotFoundError):
    """Referral code does not exist in this brand."""

    def __init__(self, identifier=None):
        super().__init__("Referral code", identifier)


class BusinessRule(str, Enum):
    """Business rules whose violation is a terminal, user-facing outcome."""
    INSUFFICIENT_BALANCE = 'INSUFFICIENT_BALANCE'
    SELF_REFERRAL = 'SELF_REFERRAL'
    ALREADY_REFERRED = 'ALREADY_REFERRED'
    BELOW_MINIMUM_REDEMPTION = 'BELOW_MINIMUM_REDEMPTION'
    REFERRAL_PROGRAM_INACTIVE = 'REFERRAL_PROGRAM_INACTIVE'
    REFERRAL_LIMIT_REACHED = 'REFERRAL_LIMIT_REACHED'


class BusinessRuleViolation(LedgerError):
    """A request was well-formed but breaks a ledger rule."""

    def __init__(self, rule: BusinessRule, message: str, details: Optional[Dict[str, Any]] = None):
        self.rule = BusinessRule(rule)
        self.details = details or {}
        super().__init__(message, self.rule.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule': self.rule.value,
            'message': self.message,
            'details': self.details,
        }

    @classmethod
    def rebuild(cls, rule: str, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Recreate a stored violation as its specific subclass.

        Used when an idempotency key replays a previously recorded failure,
        so the caller sees the same exception type and message as the
        original request did.
        """
        rule = BusinessRule(rule)
        klass = _VIOLATION_TYPES.get(rule, BusinessRuleViolation)
        exc = klass.__new__(klass)
        BusinessRuleViolation.__init__(exc, rule, message, details)
        return exc


class InsufficientBalanceError(BusinessRuleViolation):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(
            BusinessRule.INSUFFICIENT_BALANCE,
            message,
            {'current': current, 'required': required},
        )

    @property
    def current(self) -> int:
        return self.details.get('current')

    @property
    def required(self) -> int:
        return self.details.get('required')


class BelowMinimumRedemptionError(BusinessRuleViolation):
    """Balance has not reached the brand's redemption floor."""

    def __init__(self, current: int, minimum: int):
        message = f"Redemptions unlock at {minimum} points. Current: {current}"
        super().__init__(
            BusinessRule.BELOW_MINIMUM_REDEMPTION,
            message,
            {'current': current, 'minimum': minimum},
        )


class SelfReferralError(BusinessRuleViolation):
    """A member tried to apply their own referral code."""

    def __init__(self, member_key: str = None):
        super().__init__(
            BusinessRule.SELF_REFERRAL,
            "Cannot use your own referral code",
            {'member_key': member_key},
        )


class AlreadyReferredError(BusinessRuleViolation):
    """The member has already been referred in this brand."""

    def __init__(self, member_key: str = None, code: str = None):
        super().__init__(
            BusinessRule.ALREADY_REFERRED,
            "Member has already been referred",
            {'member_key': member_key, 'code': code},
        )


class ReferralProgramInactiveError(BusinessRuleViolation):
    """The brand's referral program is switched off."""

    def __init__(self, brand_id: str = None):
        super().__init__(
            BusinessRule.REFERRAL_PROGRAM_INACTIVE,
            "Referral program is not active",
            {'brand_id': brand_id},
        )


class ReferralLimitReachedError(BusinessRuleViolation):
    """The referrer has hit the monthly referral cap."""

    def __init__(self, limit: int, current: int):
        message = f"Monthly referral limit reached. Limit: {limit}, Current: {current}"
        super().__init__(
            BusinessRule.REFERRAL_LIMIT_REACHED,
            message,
            {'limit': limit, 'current': current},
        )


_VIOLATION_TYPES = {
    BusinessRule.INSUFFICIENT_BALANCE: InsufficientBalanceError,
    BusinessRule.BELOW_MINIMUM_REDEMPTION: BelowMinimumRedemptionError,
    BusinessRule.SELF_REFERRAL: SelfReferralError,
    BusinessRule.ALREADY_REFERRED: AlreadyReferredError,
    BusinessRule.REFERRAL_PROGRAM_INACTIVE: ReferralProgramInactiveError,
    BusinessRule.REFERRAL_LIMIT_REACHED: ReferralLimitReachedError,
}


class ConflictReplay(LedgerError):
    """
    An idempotency key was already resolved.

    Not a user-facing error: callers catch it and return the original
    outcome stored on ``record``.
    """

    def __init__(self, record):
        self.record = record
        super().__init__(
            f"Idempotency key '{record.idempotency_key}' already resolved",
            "CONFLICT_REPLAY",
        )


class StorageError(LedgerError):
    """Durability or transient database failure; safe to retry with the same key."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "STORAGE_ERROR")
