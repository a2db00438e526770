"""
Reward catalog model (read-only from the ledger's point of view).
"""
from datetime import datetime
from ..extensions import db


class RewardCatalogEntry(db.Model):
    """A reward a member can redeem points for."""
    __tablename__ = 'reward_catalog'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    reward_id = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    cost_points = db.Column(db.Integer, nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('brand_id', 'reward_id', name='uq_reward_brand'),
    )

    def __repr__(self):
        return f'<RewardCatalogEntry {self.brand_id}/{self.reward_id}: {self.cost_points} pts>'

    def to_dict(self):
        return {
            'reward_id': self.reward_id,
            'name': self.name,
            'cost_points': self.cost_points,
            'active': self.active,
        }
