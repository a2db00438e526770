"""
Idempotency bookkeeping for mutating operations.

Records are written inside the same transaction as the ledger effect, so
a key either resolves together with its entries or not at all.
"""
import hashlib
import json
from typing import Any, Dict, Optional

from flask import current_app

from ..extensions import db
from ..models import IdempotencyRecord
from ..utils.exceptions import BusinessRuleViolation, ConflictReplay, ValidationError


def fingerprint(operation: str, params: Dict[str, Any]) -> str:
    """Stable hash of an operation and its request parameters."""
    payload = json.dumps({'operation': operation, 'params': params}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


class IdempotencyStore:
    """Per-brand access to idempotency records."""

    def __init__(self, brand_id: str):
        self.brand_id = brand_id

    def find(self, member_key: str, idempotency_key: str) -> Optional[IdempotencyRecord]:
        return IdempotencyRecord.query.filter_by(
            brand_id=self.brand_id,
            member_key=member_key,
            idempotency_key=idempotency_key,
        ).first()

    def check(self, member_key: str, idempotency_key: str, operation: str, request_fingerprint: str) -> None:
        """
        Raise ConflictReplay if the key is already resolved.

        Raises:
            ValidationError: If the key was used for a different request
            ConflictReplay: If the key resolved for this same request
        """
        record = self.find(member_key, idempotency_key)
        if record is not None:
            self.ensure_matches(record, operation, request_fingerprint)
            raise ConflictReplay(record)

    @staticmethod
    def ensure_matches(record: IdempotencyRecord, operation: str, request_fingerprint: str) -> None:
        if record.operation != operation or record.fingerprint != request_fingerprint:
            raise ValidationError(
                f"Idempotency key '{record.idempotency_key}' was already used for a different request",
                field='idempotency_key',
            )

    def record_success(self, member_key: str, idempotency_key: str, operation: str,
                       request_fingerprint: str, result: Dict[str, Any]) -> IdempotencyRecord:
        record = IdempotencyRecord(
            brand_id=self.brand_id,
            member_key=member_key,
            idempotency_key=idempotency_key,
            operation=operation,
            fingerprint=request_fingerprint,
            status=IdempotencyRecord.STATUS_SUCCEEDED,
            result_json=json.dumps(result, default=str),
        )
        db.session.add(record)
        db.session.flush()
        return record

    def record_failure(self, member_key: str, idempotency_key: str, operation: str,
                       request_fingerprint: str, error: BusinessRuleViolation) -> IdempotencyRecord:
        record = IdempotencyRecord(
            brand_id=self.brand_id,
            member_key=member_key,
            idempotency_key=idempotency_key,
            operation=operation,
            fingerprint=request_fingerprint,
            status=IdempotencyRecord.STATUS_FAILED,
            error_code=error.rule.value,
            error_message=error.message[:500],
            error_details_json=json.dumps(error.details, default=str),
        )
        db.session.add(record)
        db.session.flush()
        current_app.logger.info(
            f"[Ledger] {operation} rejected for {self.brand_id}/{member_key} "
            f"(key={idempotency_key}): {error.rule.value}"
        )
        return record

    @staticmethod
    def resolve(record: IdempotencyRecord) -> Dict[str, Any]:
        """Return the stored result, or re-raise the stored failure."""
        if record.succeeded:
            return record.result
        raise BusinessRuleViolation.rebuild(record.error_code, record.error_message, record.error_details)
