"""
Cache utilities for the loyalty ledger.

Caches read-only brand configuration (tier thresholds, host lookups).
Ledger state is never cached.

Usage:
    from loyalty_ledger.utils.cache import cache, cache_key

    key = cache_key('thresholds', brand_id='acme')
    cache.set(key, data, timeout=300)

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set or unavailable.
"""
import os
import logging

from ..extensions import cache

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TIMEOUT = 300  # 5 minutes


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to simple cache.

    An explicit CACHE_TYPE in the app config (e.g. NullCache in tests)
    is respected as-is.

    Args:
        app: Flask application instance

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    app.config.setdefault('CACHE_DEFAULT_TIMEOUT', DEFAULT_CACHE_TIMEOUT)

    if app.config.get('CACHE_TYPE'):
        cache.init_app(app)
        logger.info('[Ledger] Using configured cache: %s', app.config['CACHE_TYPE'])
        return app.config['CACHE_TYPE'] == 'RedisCache'

    redis_url = os.getenv('REDIS_URL')

    if redis_url:
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_KEY_PREFIX'] = 'ledger:'

            cache.init_app(app)
            logger.info('[Ledger] Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except Exception as e:
            logger.warning('[Ledger] Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'

    cache.init_app(app)
    logger.info('[Ledger] Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from function arguments.

        key = cache_key('thresholds', brand_id='acme')
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)
