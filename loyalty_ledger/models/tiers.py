"""
Membership tier models.
"""
from datetime import datetime
from decimal import Decimal
from ..extensions import db


class TierThreshold(db.Model):
    """
    Lifetime-points threshold for a tier.

    A member holds the highest tier whose min_lifetime_points does not
    exceed their lifetime earned points.
    """
    __tablename__ = 'tier_thresholds'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    tier_name = db.Column(db.String(50), nullable=False)
    min_lifetime_points = db.Column(db.Integer, nullable=False)
    points_multiplier = db.Column(db.Numeric(4, 2), default=Decimal('1.00'), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'tier_name', name='uq_tier_threshold_name'),
    )

    def __repr__(self):
        return f'<TierThreshold {self.brand_id}/{self.tier_name} >= {self.min_lifetime_points}>'

    def to_dict(self):
        return {
            'tier_name': self.tier_name,
            'min_lifetime_points': self.min_lifetime_points,
            'points_multiplier': float(self.points_multiplier or 1),
        }


class TierChange(db.Model):
    """Audit trail of tier upgrades and downgrades."""
    __tablename__ = 'tier_changes'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    member_key = db.Column(db.String(255), nullable=False)

    from_tier = db.Column(db.String(50))
    to_tier = db.Column(db.String(50), nullable=False)
    change_type = db.Column(db.String(20), nullable=False)  # upgrade, downgrade
    lifetime_earned = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.Index('ix_tier_changes_member', 'brand_id', 'member_key'),
    )

    def __repr__(self):
        return f'<TierChange {self.member_key}: {self.from_tier} -> {self.to_tier}>'

    def to_dict(self):
        return {
            'from_tier': self.from_tier,
            'to_tier': self.to_tier,
            'change_type': self.change_type,
            'lifetime_earned': self.lifetime_earned,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
