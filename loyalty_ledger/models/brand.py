"""
Brand (tenant) model.

Brands are owned by the commerce backend; the ledger only reads them.
"""
from datetime import datetime
from ..extensions import db


class Brand(db.Model):
    """A tenant storefront. Every ledger row is partitioned by brand_id."""
    __tablename__ = 'brands'

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    domain = db.Column(db.String(255), unique=True, index=True)

    # Per-brand secret for deterministic referral codes (config salt if null)
    referral_salt = db.Column(db.String(128))

    # Loyalty settings
    min_redemption_points = db.Column(db.Integer, default=0, nullable=False)
    tier_grace_days = db.Column(db.Integer)  # Null = TIER_DOWNGRADE_GRACE_DAYS

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<Brand {self.id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'domain': self.domain,
            'min_redemption_points': self.min_redemption_points,
            'tier_grace_days': self.tier_grace_days,
            'is_active': self.is_active,
        }
