"""
CLI Commands for ledger maintenance.
"""
import click
from flask.cli import with_appcontext

from ..services.directory import BrandResolver, MemberDirectory
from ..services.ledger_store import LedgerStore
from ..utils.exceptions import LedgerError


@click.group('ledger')
def ledger_cli():
    """Ledger maintenance commands."""
    pass


@ledger_cli.command('reconcile')
@click.option('--brand-id', required=True, help='Brand to reconcile')
@click.option('--member', help='Only this member (email)')
@click.option('--fix', is_flag=True, help='Rewrite mismatched balance projections from the ledger')
@with_appcontext
def reconcile(brand_id, member, fix):
    """
    Verify cached balances against the sum of ledger entries.

    Entries are never modified; --fix only rewrites the projection.
    """
    try:
        brand = BrandResolver().resolve(brand_id)
        member_key = MemberDirectory().normalize(member) if member else None
        mismatches = LedgerStore(brand.id).reconcile(member_key=member_key, fix=fix)
    except LedgerError as e:
        raise click.ClickException(e.message)

    if not mismatches:
        click.echo(f"Ledger for {brand.id} is consistent")
        return

    click.echo(f"Found {len(mismatches)} mismatch(es) for {brand.id}:")
    for report in mismatches:
        status = 'fixed' if report['fixed'] else 'not fixed'
        click.echo(
            f"  {report['member_key']}: cached balance {report['cached']['balance']}, "
            f"ledger balance {report['ledger']['balance']} ({status})"
        )

    if not fix:
        click.echo("Run again with --fix to rebuild the projection")


def init_app(app):
    """Register ledger commands with Flask app."""
    app.cli.add_command(ledger_cli)
