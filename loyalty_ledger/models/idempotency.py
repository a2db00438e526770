"""
Idempotency records for mutating ledger operations.
"""
import json
from datetime import datetime
from ..extensions import db


class IdempotencyRecord(db.Model):
    """
    Outcome of a mutating request, keyed per member.

    A key resolves exactly once: the stored success result or business
    rule failure is returned for every later request with the same key.
    """
    __tablename__ = 'idempotency_records'

    STATUS_SUCCEEDED = 'succeeded'
    STATUS_FAILED = 'failed'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    member_key = db.Column(db.String(255), nullable=False)
    idempotency_key = db.Column(db.String(255), nullable=False)

    operation = db.Column(db.String(50), nullable=False)  # earn, adjust, redeem, referral_apply
    fingerprint = db.Column(db.String(64), nullable=False)  # sha256 of request parameters
    status = db.Column(db.String(20), nullable=False)

    result_json = db.Column(db.Text)
    error_code = db.Column(db.String(50))
    error_message = db.Column(db.String(500))
    error_details_json = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'member_key', 'idempotency_key', name='uq_idempotency_member_key'),
    )

    def __repr__(self):
        return f'<IdempotencyRecord {self.member_key}/{self.idempotency_key}: {self.status}>'

    @property
    def succeeded(self) -> bool:
        return self.status == self.STATUS_SUCCEEDED

    @property
    def result(self):
        return json.loads(self.result_json) if self.result_json else None

    @property
    def error_details(self):
        return json.loads(self.error_details_json) if self.error_details_json else {}
