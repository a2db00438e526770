"""
CLI Commands for tier maintenance.

Run from cron:

# Tier downgrade re-check (daily at 3 AM)
0 3 * * * cd /app && flask tiers recheck --brand-id=acme
"""
import click
from flask.cli import with_appcontext

from ..services.directory import BrandResolver
from ..services.tier_service import TierCalculator
from ..utils.exceptions import NotFoundError


@click.group('tiers')
def tiers_cli():
    """Tier management commands."""
    pass


@tiers_cli.command('recheck')
@click.option('--brand-id', required=True, help='Brand to re-check')
@click.option('--dry-run', is_flag=True, help='Preview without changing tiers')
@with_appcontext
def recheck(brand_id, dry_run):
    """
    Re-evaluate every member's tier against the brand thresholds.

    Downgrades members who no longer qualify, except inside the grace window.
    """
    try:
        brand = BrandResolver().resolve(brand_id)
    except NotFoundError as e:
        raise click.ClickException(e.message)

    result = TierCalculator(brand.id).recheck(dry_run=dry_run)
    prefix = '[DRY RUN] ' if dry_run else ''

    click.echo(f"{prefix}Tier recheck for {brand.id}")
    click.echo(f"  Checked: {result['checked']}")
    click.echo(f"  Upgraded: {result['upgraded']}")
    click.echo(f"  Downgraded: {result['downgraded']}")
    click.echo(f"  Unchanged: {result['unchanged']}")
    click.echo(f"  Suppressed (grace window): {len(result['suppressed'])}")
    for member_key in result['suppressed'][:10]:
        click.echo(f"    - {member_key}")

    if result['errors']:
        click.echo(f"  Errors: {result['errors']}")


def init_app(app):
    """Register tier commands with Flask app."""
    app.cli.add_command(tiers_cli)
