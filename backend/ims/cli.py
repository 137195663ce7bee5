# Overview: Flask CLI command groups for bootstrap, demo data and request inspection.

# backend/ims/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create any missing tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Development data:
# - python -m flask seed demo
#   Departments HSE/TRP/VRP/Store with items, projects, engineers and one
#   role profile per role flag. Existing rows are left alone.
#
# Request inspection:
# - python -m flask requests list [--status SUBMITTED] [--limit 20]
#   Most recently changed requests.
# - python -m flask requests show TRP-0312007
#   Lines and activity log of one request.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Engineer, Item, MaterialRequest, Project, RoleProfile
from .schemas import parse_lines, parse_request_status
from .services.activity_log_service import status_key_for_entry
from .services.lifecycle_service import normalize_line_status
from .services.presentation_service import format_actor_label
from .time_utils import ms_to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create missing tables. Safe to run repeatedly."""
    db.create_all()
    click.echo("PASS Tables ready.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask seed demo' for sample data.")


@click.group('seed')
def seed_group():
    """Development data."""


DEMO_ITEMS = [
    # item_code, name_en, owner_dept_id, unit, units, qty
    ("HSE-001", "Safety Helmet", "HSE", "PCS", [], 40),
    ("HSE-002", "Safety Gloves", "HSE", "PR", [{"code": "BOX", "label": "Box", "per_base": 0.1}], 200),
    ("TRP-001", "Engine Oil", "TRP", "L", [], 120),
    ("TRP-002", "Tyre 315/80", "TRP", "PCS", [], 12),
    ("VRP-001", "Cable Ties", "VRP", "PACK", [], 30),
    ("STR-001", "A4 Paper", "Store", "BOX", [], 25),
]

DEMO_PROFILES = [
    # uid, full_name, roles, department_ids
    ("admin", "Admin User", {"admin": True}, ["Store"]),
    ("trp-req", "Transport Requester", {"requester": True}, ["TRP"]),
    ("trp-mgr", "Transport Manager", {"dept_manager": True}, ["TRP"]),
    ("hse-mgr", "HSE Manager", {"dept_manager": True}, ["HSE"]),
    ("store-1", "Store Keeper", {"store_officer": True}, ["Store"]),
]


@seed_group.command('demo')
@with_appcontext
def seed_demo():
    """Insert demo catalog, reference data and role profiles."""
    created = 0
    for code, name, dept, unit, units, qty in DEMO_ITEMS:
        if db.session.get(Item, code):
            continue
        allowed = [unit] + [u["code"] for u in units]
        db.session.add(Item(
            item_code=code, name_en=name, owner_dept_id=dept,
            unit=unit, allowed_units=allowed, units=units, qty=qty,
        ))
        created += 1

    for pid, name in (("P-100", "Northern Depot"), ("P-200", "Harbour Expansion")):
        if not db.session.get(Project, pid):
            db.session.add(Project(id=pid, name_en=name, active=True))
            created += 1

    for eid, name in (("E-1", "Omar Haddad"), ("E-2", "Lina Saleh")):
        if not db.session.get(Engineer, eid):
            db.session.add(Engineer(id=eid, name_en=name, active=True))
            created += 1

    for uid, full_name, roles, depts in DEMO_PROFILES:
        if db.session.get(RoleProfile, uid):
            click.echo(f"WARN  Profile '{uid}' already exists, skipping...")
            continue
        db.session.add(RoleProfile(
            uid=uid, full_name=full_name, email=f"{uid}@ims.local",
            roles=roles, department_ids=depts, is_active=True,
        ))
        created += 1

    db.session.commit()
    click.echo(f"PASS Demo data ready ({created} rows created).")


@click.group('requests')
def requests_group():
    """Request inspection commands."""


@requests_group.command('list')
@click.option('--status', default=None, help='Filter by status')
@click.option('--limit', type=int, default=20, help='Maximum rows')
@with_appcontext
def list_requests(status, limit):
    """List requests, most recently changed first."""
    query = db.session.query(MaterialRequest)
    if status:
        query = query.filter(MaterialRequest.status == parse_request_status(status).value)
    rows = query.order_by(MaterialRequest.updated_at_ms.desc()).limit(limit).all()

    if not rows:
        click.echo("No requests found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'Code':<16} {'Status':<20} {'From':<8} {'Lines':<6} {'Updated'}")
    click.echo("="*80)
    for rq in rows:
        active = sum(1 for line in parse_lines(rq.lines) if not line.deleted)
        click.echo(
            f"{rq.rq_code:<16} {rq.status:<20} {rq.from_dept or '-':<8} {active:<6} "
            f"{ms_to_utc_z(rq.updated_at_ms) or '-'}"
        )
    click.echo("="*80 + "\n")


@requests_group.command('show')
@click.argument('rq_code')
@with_appcontext
def show_request(rq_code):
    """Show the lines and activity log of one request."""
    rq = db.session.get(MaterialRequest, rq_code)
    if rq is None:
        click.echo(f"FAIL Request {rq_code} not found")
        raise SystemExit(1)

    click.echo(f"\n{rq.rq_code}  {rq.status}  revision {rq.updated_at_ms}")
    click.echo(f"From: {rq.from_dept or '-'}  Project: {rq.project_id or '-'}  Engineer: {rq.engineer_id or '-'}")
    if rq.note:
        click.echo(f"Note: {rq.note}")

    click.echo("\nLines:")
    for line in parse_lines(rq.lines):
        click.echo(
            f"  {line.key:<20} {line.item_id:<10} {line.qty:>6} {line.unit:<5} "
            f"{line.owner_dept_id:<6} {normalize_line_status(line).value}"
        )

    click.echo("\nActivity:")
    for entry in rq.activity_log or []:
        when = ms_to_utc_z(entry.get("created_at_ms")) or "-"
        status = status_key_for_entry(entry) or "-"
        click.echo(f"  {when}  [{status}]  {entry.get('summary', '')}  ({format_actor_label(entry.get('actor'))})")
    click.echo("")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(seed_group)
    app.cli.add_command(requests_group)
