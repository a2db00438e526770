"""
Loyalty points & referral ledger
Flask application factory
"""
import os
import logging
from flask import Flask

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, test_config: dict = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        test_config: Optional overrides applied after the config class

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so metadata is complete for migrations and create_all()
    from . import models  # noqa: F401

    # Initialize caching (Redis with graceful fallback)
    from .utils.cache import init_cache
    init_cache(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    logger.info('Loyalty ledger app created (config=%s)', config_name)
    return app
