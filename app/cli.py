"""Operator commands: ``python -m app.cli --help``."""
import click
from fastapi import HTTPException

from .core.database import SessionLocal, init_db
from .jobs.reconciliation import ReconciliationJob
from .services.auth_service import AuthService

@click.group()
def cli():
    """MediSlot maintenance commands."""

@cli.command("init-db")
def init_db_command():
    """Create database tables."""
    init_db()
    click.echo("Database initialized")

@cli.command("make-admin")
@click.argument("email")
def make_admin(email):
    """Promote a registered user to ADMIN by email (bootstrap)."""
    db = SessionLocal()
    try:
        user = AuthService(db).promote_to_admin(email.strip().lower())
        click.echo(f"{user.email} promoted to ADMIN")
    except HTTPException as exc:
        raise click.ClickException(exc.detail)
    finally:
        db.close()

@cli.command("reconcile")
def reconcile():
    """Run one reconciliation sweep and print the counts."""
    result = ReconciliationJob().run_once()
    if result is None:
        raise click.ClickException("A sweep is already running")
    click.echo(
        f"failed={result.failed_count} released={result.released_count} "
        f"slots_released={result.slots_released}"
    )

if __name__ == "__main__":
    cli()
