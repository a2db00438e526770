"""
Flask extensions shared by the ledger package.

Instances are created unbound here and attached to the app in create_app().
"""
from flask_caching import Cache
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Ledger database (entries, balance projection, referral rows, idempotency records)
db = SQLAlchemy()

# Alembic migrations via Flask-Migrate
migrate = Migrate()

# Read-through cache for brand configuration (thresholds, host lookups)
cache = Cache()
