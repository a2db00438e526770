"""
Shared pytest fixtures for the loyalty ledger tests.

The app runs in testing mode against a temporary SQLite file so that
worker threads in the concurrency tests each get their own connection.
"""
from decimal import Decimal

import pytest

from loyalty_ledger import create_app
from loyalty_ledger.extensions import db
from loyalty_ledger.models import Brand, ReferralProgram, RewardCatalogEntry, TierThreshold
from loyalty_ledger.services import LoyaltyLedgerAPI

BRAND_ID = 'acme'
OTHER_BRAND_ID = 'globex'


@pytest.fixture
def app(tmp_path):
    """Create application for testing."""
    app = create_app('testing', test_config={
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.db'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30}},
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def api():
    return LoyaltyLedgerAPI()


@pytest.fixture
def brand_id(app):
    """Two active brands with a small reward catalog; returns the primary brand id."""
    with app.app_context():
        db.session.add(Brand(id=BRAND_ID, name='Acme Coffee', domain='acme.example.com'))
        db.session.add(Brand(id=OTHER_BRAND_ID, name='Globex Tea', domain='globex.example.com'))
        db.session.add(Brand(id='defunct', name='Defunct Shop', domain='defunct.example.com', is_active=False))
        db.session.add_all([
            RewardCatalogEntry(brand_id=BRAND_ID, reward_id='coffee', name='Free Coffee', cost_points=60),
            RewardCatalogEntry(brand_id=BRAND_ID, reward_id='tote', name='Tote Bag', cost_points=500),
            RewardCatalogEntry(brand_id=BRAND_ID, reward_id='retired', name='Old Mug', cost_points=10, active=False),
            RewardCatalogEntry(brand_id=OTHER_BRAND_ID, reward_id='coffee', name='Free Tea', cost_points=30),
        ])
        db.session.commit()
    return BRAND_ID


@pytest.fixture
def tiered_brand(app, brand_id):
    """Primary brand with silver/gold/platinum thresholds."""
    with app.app_context():
        db.session.add_all([
            TierThreshold(brand_id=brand_id, tier_name='silver', min_lifetime_points=500,
                          points_multiplier=Decimal('1.25')),
            TierThreshold(brand_id=brand_id, tier_name='gold', min_lifetime_points=2000,
                          points_multiplier=Decimal('1.50')),
            TierThreshold(brand_id=brand_id, tier_name='platinum', min_lifetime_points=5000,
                          points_multiplier=Decimal('2.00')),
        ])
        db.session.commit()
    return brand_id


@pytest.fixture
def referral_program(app, brand_id):
    """Explicit referral program row for the primary brand."""
    with app.app_context():
        db.session.add(ReferralProgram(
            brand_id=brand_id,
            referrer_points=200,
            referee_points=75,
            monthly_referral_limit=2,
            is_active=True,
        ))
        db.session.commit()
    return brand_id
