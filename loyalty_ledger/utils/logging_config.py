"""
Logging setup for the loyalty ledger.

Call setup_logging() once at startup; modules then use
logging.getLogger(__name__).
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """
    Configure the root logger from LOG_LEVEL (default INFO).

    Safe to call more than once; only the first call installs a handler.
    """
    global _configured

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # SQLAlchemy engine logging is noisy at INFO
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    _configured = True

