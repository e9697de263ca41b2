#!/usr/bin/env python3
"""CLI tool for managing Jira credentials in the StandupLLM database.

Usage:
    python scripts/tokens.py list              # List all stored Jira credentials
    python scripts/tokens.py details USER_ID   # Show credential details (tokens masked)
    python scripts/tokens.py delete USER_ID    # Delete a user's credential
"""

import sys
from datetime import UTC, datetime
from pathlib import Path

import click

# Add src to path so we can import standupllm
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from standupllm.config import get_db_path
from standupllm.db.token_storage import TokenStorage


def get_storage(db_path: str | None) -> TokenStorage:
    """Open the credential store.

    Raises:
        click.ClickException: If the database doesn't exist
    """
    db_file = Path(db_path) if db_path else get_db_path()
    if not db_file.exists():
        raise click.ClickException(f"Database not found: {db_file}\nConnect a Jira account first to create it.")
    return TokenStorage(db_file=str(db_file))


def _mask(token: str) -> str:
    return f"{token[:6]}…{token[-4:]}" if len(token) > 12 else "***"


def _fmt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "N/A"


@click.group()
def cli():
    """StandupLLM Jira credential CLI."""
    pass


@cli.command(name="list")
@click.option("--db", default=None, help="Path to database file (default: $STANDUPLLM_DATA_DIR/standupllm.db)")
def list_credentials(db: str | None):
    """List all users with a stored Jira credential."""
    storage = get_storage(db)
    records = storage.list_jira_credentials()

    click.echo("=" * 100)
    click.echo(f"🔐 Jira Credentials - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    click.echo("=" * 100)

    if not records:
        click.echo("  (no credentials)")
        return

    click.echo(f"{'User ID':<36} {'Site':<32} {'Expires':<20} {'Last Updated':<20}")
    click.echo(f"{'-' * 36} {'-' * 32} {'-' * 20} {'-' * 20}")
    for record in records:
        click.echo(f"{record.user_id:<36} {record.site_url:<32} {_fmt(record.expires_at):<20} {_fmt(record.updated_at):<20}")

    click.echo()
    click.echo(f"Total: {len(records)} user(s)")


@cli.command()
@click.argument("user_id")
@click.option("--db", default=None, help="Path to database file")
def details(user_id: str, db: str | None):
    """Show the Jira credential of USER_ID."""
    storage = get_storage(db)
    credential = storage.get_jira_credential(user_id)
    if credential is None:
        raise click.ClickException(f"No Jira credential for user {user_id}")

    expired = credential.expires_at <= datetime.now(UTC)
    click.echo(f"User ID:       {credential.user_id}")
    click.echo(f"Site:          {credential.site_url}")
    click.echo(f"Cloud ID:      {credential.cloud_id}")
    click.echo(f"Access token:  {_mask(credential.access_token)}")
    click.echo(f"Refresh token: {_mask(credential.refresh_token)}")
    click.echo(f"Expires at:    {_fmt(credential.expires_at)} UTC{' (expired)' if expired else ''}")


@cli.command()
@click.argument("user_id")
@click.option("--db", default=None, help="Path to database file")
@click.confirmation_option(prompt="Are you sure you want to delete this credential?")
def delete(user_id: str, db: str | None):
    """Delete the Jira credential of USER_ID."""
    storage = get_storage(db)
    if storage.delete_jira_credential(user_id):
        click.echo(f"✅ Deleted Jira credential for {user_id}")
    else:
        raise click.ClickException(f"No Jira credential for user {user_id}")


if __name__ == "__main__":
    cli()
