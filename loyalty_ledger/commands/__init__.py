"""
CLI Commands for the loyalty ledger.

Provides Flask CLI commands for scheduled and maintenance jobs.

Usage:
    flask tiers recheck --brand-id acme [--dry-run]              # Periodic downgrade re-check
    flask ledger reconcile --brand-id acme [--member EMAIL] [--fix]  # Verify balance projection
"""
from .tiers import init_app as init_tier_commands
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_tier_commands(app)
    init_ledger_commands(app)
