# Overview: Flask CLI command groups for tenant setup and document maintenance.

# backend/billing/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations.
# - python -m flask orgs create --name "Acme Corp" --code "ACME"
#   Create a new organization (tenant).
# - python -m flask orgs add-store --org-id 1 --name "Acme Online" --url https://acme.example
#   Add a store to an organization.
#
# Documents:
# - python -m flask documents resync-sequences [--org-id 1] [--kind receipt]
#   Re-seed numbering counters past the highest stored document number.
# - python -m flask documents generate-orders --org-id 1 --kind receipt 10 11 12
#   Generate one document per order id, skipping orders that fail.
# - python -m flask documents show --org-id 1 --kind receipt REC-2026-0001
#   Print a stored document.

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Document, DocumentSequence, Organization, Store
from .services import document_service, generation_service
from .validation import DOCUMENT_KINDS, DocumentError


@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Stores':<8} {'Documents'}")
    click.echo("="*80)

    for org in orgs:
        store_count = db.session.query(Store).filter_by(org_id=org.id).count()
        doc_count = db.session.query(Document).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"

        click.echo(f"{org.id:<5} {org.name:<30} {org.code or '-':<15} {active_str:<8} {store_count:<8} {doc_count}")

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--email', help='Contact e-mail printed on documents when templates leave it blank')
@click.option('--phone', help='Contact phone')
@with_appcontext
def create_org_cli(name, code, email, phone):
    """Create a new organization (tenant)."""
    existing = db.session.query(Organization).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Organization with code '{code}' already exists")
        return

    org = Organization(name=name, code=code, email=email, phone=phone, is_active=True)
    db.session.add(org)
    db.session.commit()

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Code: {org.code})")


@orgs_group.command('add-store')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--name', required=True, help='Store name')
@click.option('--url', help='Public store URL')
@click.option('--logo-url', help='Store logo URL')
@with_appcontext
def add_store_to_org_cli(org_id, name, url, logo_url):
    """Add a store to an organization."""
    org = db.session.query(Organization).filter_by(id=org_id).first()
    if not org:
        click.echo(f"FAIL Organization ID {org_id} not found")
        return

    # Check name uniqueness within org
    existing = db.session.query(Store).filter_by(org_id=org_id, name=name).first()
    if existing:
        click.echo(f"FAIL Store '{name}' already exists in this organization")
        return

    store = Store(org_id=org_id, name=name, url=url, logo_url=logo_url)
    db.session.add(store)
    db.session.commit()

    click.echo(f"PASS Created store: {store.name} (ID: {store.id}) in org '{org.name}'")


@click.group('documents')
def documents_group():
    """Receipt and invoice maintenance commands."""


@documents_group.command('resync-sequences')
@click.option('--org-id', type=int, help='Limit to one organization')
@click.option('--kind', type=click.Choice(DOCUMENT_KINDS), help='Limit to one document kind')
@with_appcontext
def resync_sequences_cli(org_id, kind):
    """Re-seed numbering counters from stored documents."""
    query = db.session.query(Organization.id)
    if org_id:
        query = query.filter(Organization.id == org_id)
    org_ids = [row[0] for row in query.order_by(Organization.id).all()]
    if not org_ids:
        click.echo("No organizations found.")
        return

    kinds = [kind] if kind else list(DOCUMENT_KINDS)
    for oid in org_ids:
        for k in kinds:
            before = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(org_id=oid, document_kind=k)
                .scalar()
            )
            after = document_service.resync_document_sequence(oid, k)
            click.echo(f"PASS org {oid} {k}: next number {before or '-'} -> {after}")


@documents_group.command('generate-orders')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--kind', type=click.Choice(DOCUMENT_KINDS), default='receipt', show_default=True)
@click.argument('order_ids', nargs=-1, type=int, required=True)
@with_appcontext
def generate_orders_cli(org_id, kind, order_ids):
    """Generate one document per order id (continue on error)."""
    try:
        result = generation_service.bulk_generate(
            org_id,
            kind,
            [{"scenario": "order", "order_id": oid} for oid in order_ids],
        )
    except DocumentError as e:
        raise click.ClickException(str(e))

    for item in result.results:
        if item["status"] == "generated":
            click.echo(f"PASS #{item['index']} {item['document_number']}")
        else:
            click.echo(f"SKIP #{item['index']} {item['code']}: {item['error']}")
    click.echo(f"\n{result.generated} of {result.requested} generated")


@documents_group.command('show')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--kind', type=click.Choice(DOCUMENT_KINDS), default='receipt', show_default=True)
@click.argument('document_number')
@with_appcontext
def show_document_cli(org_id, kind, document_number):
    """Print a document as JSON."""
    try:
        doc = document_service.get_document_by_number(org_id, kind, document_number)
    except DocumentError as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(doc.to_dict(), indent=2, default=str))


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(documents_group)
