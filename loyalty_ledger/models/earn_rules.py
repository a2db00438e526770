"""
Earn rule model (read-only brand configuration).
"""
from datetime import datetime
from ..extensions import db


class EarnRule(db.Model):
    """
    How many points an order earns.

    A rule awards either points_per_dollar of the order amount or a flat
    fixed_points. The highest-priority active purchase rule applies; the
    member's tier multiplier is applied on top.
    """
    __tablename__ = 'earn_rules'

    id = db.Column(db.Integer, primary_key=True)
    brand_id = db.Column(db.String(64), db.ForeignKey('brands.id'), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    rule_type = db.Column(db.String(30), nullable=False, default='purchase')

    points_per_dollar = db.Column(db.Numeric(10, 2))
    fixed_points = db.Column(db.Integer)

    min_order_amount = db.Column(db.Numeric(10, 2))
    max_points_per_order = db.Column(db.Integer)

    priority = db.Column(db.Integer, default=0, nullable=False)  # Higher wins
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.Index('ix_earn_rules_brand_type', 'brand_id', 'rule_type'),
    )

    def __repr__(self):
        return f'<EarnRule {self.brand_id}/{self.name}>'

    def to_dict(self):
        return {
            'name': self.name,
            'rule_type': self.rule_type,
            'points_per_dollar': str(self.points_per_dollar) if self.points_per_dollar is not None else None,
            'fixed_points': self.fixed_points,
            'min_order_amount': str(self.min_order_amount) if self.min_order_amount is not None else None,
            'max_points_per_order': self.max_points_per_order,
            'priority': self.priority,
        }
