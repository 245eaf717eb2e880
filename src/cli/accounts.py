"""
Connected account CLI commands.

  autopost accounts list   [--user …]
  autopost accounts add    <platform> <platform-id> --user … --token …
  autopost accounts remove <account-id>
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from src.content.models import Platform, SocialAccount
from src.content.storage import get_store

console = Console()
app = typer.Typer(help="Manage connected social accounts.")


@app.command("list")
def list_accounts(
    user_id: Optional[str] = typer.Option(None, "--user", help="Filter by user ID."),
) -> None:
    """List connected accounts (tokens are never shown)."""
    accounts = get_store().list_accounts(user_id=user_id)
    if not accounts:
        rprint("[yellow]No connected accounts.[/yellow]")
        return

    table = Table(title=f"🔗 Accounts — {len(accounts)}")
    table.add_column("ID", style="dim")
    table.add_column("User")
    table.add_column("Platform", style="cyan")
    table.add_column("Username")
    table.add_column("Token expires (UTC)")
    for a in accounts:
        table.add_row(
            a.id,
            a.user_id,
            a.platform.value,
            f"@{a.username}" if a.username else "—",
            a.expires_at.strftime("%d/%m/%Y %H:%M") if a.expires_at else "never",
        )
    console.print(table)


@app.command()
def add(
    platform: Platform = typer.Argument(..., help="TWITTER | INSTAGRAM | FACEBOOK"),
    platform_id: str = typer.Argument(..., help="User, business account or page ID"),
    user_id: str = typer.Option(..., "--user", help="Owning user ID."),
    access_token: str = typer.Option(..., "--token", help="Access token."),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token"),
    expires_in: Optional[int] = typer.Option(
        None, "--expires-in", help="Token lifetime in seconds (Twitter)."
    ),
    username: str = typer.Option("", "--username"),
) -> None:
    """Connect an account (or refresh the credentials of an existing one)."""
    expires_at = None
    if expires_in is not None:
        expires_at = dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=expires_in)
    account = get_store().upsert_account(
        SocialAccount(
            user_id=user_id,
            platform=platform,
            platform_id=platform_id,
            username=username,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )
    )
    rprint(f"[green]✓ Connected[/green] {platform.value} account [cyan]{account.id}[/cyan]")


@app.command()
def remove(
    account_id: str = typer.Argument(..., help="Account ID to disconnect"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Disconnect an account. Its posts are deleted too."""
    if not yes:
        typer.confirm(f"Disconnect {account_id} and delete its posts?", abort=True)
    if not get_store().delete_account(account_id):
        rprint(f"[red]Account not found:[/red] {account_id}")
        raise typer.Exit(1)
    rprint(f"[green]✓ Disconnected[/green] {account_id}")
