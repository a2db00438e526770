"""
Loyalty ledger entry point.

Exposes ``app`` for the Flask CLI (flask db upgrade, flask tiers recheck, ...).
"""
import os
import sys
import logging

from loyalty_ledger import create_app

logger = logging.getLogger('loyalty_ledger.run')

# Default to production for deployed workers
config_name = os.getenv('FLASK_ENV', 'production')

try:
    app = create_app(config_name)
except RuntimeError as e:
    logger.critical('FATAL ERROR during app creation: %s', e)
    sys.exit(1)
