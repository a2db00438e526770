"""
Referral models.
Program configuration, issued codes and applied referrals.
"""
from datetime import datetime
from ..extensions import db


class ReferralProgram(db.Model):
    """
    Referral program configuration for a brand.
    Brands without a row use the configured defaults.
    """
    __tablename__ = 'referral_programs'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False, unique=True)

    # Points granted on a successful referral
    referrer_points = db.Column(db.Integer, nullable=False, default=100)
    referee_points = db.Column(db.Integer, nullable=False, default=50)

    # Max referrals per referrer per calendar month (null = unlimited)
    monthly_referral_limit = db.Column(db.Integer)

    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<ReferralProgram brand={self.brand_id}>'

    def to_dict(self):
        return {
            'brand_id': self.brand_id,
            'referrer_points': self.referrer_points,
            'referee_points': self.referee_points,
            'monthly_referral_limit': self.monthly_referral_limit,
            'is_active': self.is_active,
        }


class ReferralCode(db.Model):
    """
    A member's referral code. One per owner, derived deterministically
    from (brand_id, member_key, salt).
    """
    __tablename__ = 'referral_codes'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    owner_member_key = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'owner_member_key', name='uq_referral_code_owner'),
        db.UniqueConstraint('brand_id', 'code', name='uq_referral_code_value'),
    )

    def __repr__(self):
        return f'<ReferralCode {self.code} owner={self.owner_member_key}>'

    def to_dict(self):
        return {
            'code': self.code,
            'owner_member_key': self.owner_member_key,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ReferralApplication(db.Model):
    """
    A referral code applied by a referred member.
    A member can be referred at most once per brand.
    """
    __tablename__ = 'referral_applications'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    code = db.Column(db.String(50), nullable=False)
    referrer_member_key = db.Column(db.String(255), nullable=False)
    referred_member_key = db.Column(db.String(255), nullable=False)

    referrer_points = db.Column(db.Integer, nullable=False)
    referee_points = db.Column(db.Integer, nullable=False)

    idempotency_key = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), default='applied', nullable=False)
    applied_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'referred_member_key', name='uq_referral_referred'),
        db.Index('ix_referral_referrer_applied', 'brand_id', 'referrer_member_key', 'applied_at'),
    )

    def __repr__(self):
        return f'<ReferralApplication {self.code}: {self.referrer_member_key} -> {self.referred_member_key}>'

    def to_dict(self):
        return {
            'code': self.code,
            'referrer_member_key': self.referrer_member_key,
            'referred_member_key': self.referred_member_key,
            'referrer_points': self.referrer_points,
            'referee_points': self.referee_points,
            'status': self.status,
            'applied_at': self.applied_at.isoformat() if self.applied_at else None,
        }
