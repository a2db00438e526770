"""
Configuration management for the loyalty ledger.
"""
import os
from dotenv import load_dotenv

load_dotenv()


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Referral codes - brands without their own salt fall back to this one
    REFERRAL_CODE_SALT = os.getenv('REFERRAL_CODE_SALT', 'dev-referral-salt')
    REFERRAL_CODE_PREFIX = os.getenv('REFERRAL_CODE_PREFIX', 'R-')

    # Default referral bonuses (overridden per-brand by ReferralProgram)
    REFERRAL_REFERRER_POINTS = int(os.getenv('REFERRAL_REFERRER_POINTS', 100))
    REFERRAL_REFEREE_POINTS = int(os.getenv('REFERRAL_REFEREE_POINTS', 50))

    # Tiers
    BASE_TIER_NAME = os.getenv('BASE_TIER_NAME', 'base')
    TIER_DOWNGRADE_GRACE_DAYS = int(os.getenv('TIER_DOWNGRADE_GRACE_DAYS', 30))

    # Ledger write path
    LEDGER_MAX_RETRIES = int(os.getenv('LEDGER_MAX_RETRIES', 3))
    LEDGER_RETRY_BACKOFF_SECONDS = float(os.getenv('LEDGER_RETRY_BACKOFF_SECONDS', 0.05))
    LEDGER_LOCK_TIMEOUT_SECONDS = float(os.getenv('LEDGER_LOCK_TIMEOUT_SECONDS', 10))

    # History pagination
    HISTORY_DEFAULT_LIMIT = 50
    HISTORY_MAX_LIMIT = 100

    # Cache TTL for brand configuration lookups
    CONFIG_CACHE_TIMEOUT = 300


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///loyalty_ledger_dev.db'  # SQLite fallback for local dev
    )


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    _referral_salt = os.getenv('REFERRAL_CODE_SALT', '')

    @classmethod
    def validate_referral_salt(cls) -> str:
        """
        Validate REFERRAL_CODE_SALT in production environment.

        Referral codes are derived from this salt, so a guessable value lets
        anyone compute another member's code.

        Raises:
            RuntimeError: If the salt is missing, short, or a placeholder
        """
        if not cls._referral_salt:
            raise RuntimeError(
                "CRITICAL: REFERRAL_CODE_SALT environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        insecure_patterns = ['dev', 'change', 'default', 'test', 'secret', 'salt']
        lower_salt = cls._referral_salt.lower()
        for pattern in insecure_patterns:
            if pattern in lower_salt:
                raise RuntimeError(
                    f"CRITICAL: REFERRAL_CODE_SALT contains '{pattern}' which suggests it's not secure!\n"
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )

        if len(cls._referral_salt) < 32:
            raise RuntimeError(
                "CRITICAL: REFERRAL_CODE_SALT is too short (minimum 32 characters required)!"
            )

        return cls._referral_salt

    REFERRAL_CODE_SALT = _referral_salt  # Validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    CACHE_TYPE = 'NullCache'
    REFERRAL_CODE_SALT = 'testing-referral-salt'
    LEDGER_RETRY_BACKOFF_SECONDS = 0


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_referral_salt()
