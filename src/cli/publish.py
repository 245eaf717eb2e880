"""
Publishing CLI commands.

  autopost publish create  <account-id> --text … [--time …]  — compose a post
  autopost publish queue   [--status …]                       — list posts
  autopost publish retry   <post-id>                          — re-queue a failed post
  autopost publish run-due                                    — publish all due posts now
  autopost publish refresh-metrics                            — refresh stale engagement
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from src.content.models import InvalidTransitionError, Post, PostStatus
from src.content.storage import get_store
from src.publish.scheduler import run_metrics_refresh, run_scheduler

console = Console()
app = typer.Typer(help="Schedule, publish and track social posts.")

_STATUS_EMOJI = {
    PostStatus.DRAFT: "📝",
    PostStatus.SCHEDULED: "⏳",
    PostStatus.PUBLISHED: "✅",
    PostStatus.FAILED: "❌",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_dt(value: Optional[dt.datetime]) -> str:
    if value is None:
        return "—"
    return value.strftime("%d/%m/%Y %H:%M")


def _parse_time(value: str) -> dt.datetime:
    try:
        parsed = dt.datetime.fromisoformat(value)
    except ValueError:
        rprint(
            f"[red]Invalid --time format:[/red] {value!r}. "
            "Use ISO 8601, e.g. 2026-03-01T10:00"
        )
        raise typer.Exit(1)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@app.command()
def create(
    account_id: str = typer.Argument(..., help="Social account ID to post from"),
    text: str = typer.Option(..., "--text", help="Post content."),
    media_url: Optional[list[str]] = typer.Option(
        None,
        "--media-url",
        help="Public media URL to attach (repeat for several).",
    ),
    time: Optional[str] = typer.Option(
        None,
        "--time",
        "-t",
        help='ISO datetime (UTC if no offset), e.g. "2026-03-01T10:00". '
        "Omit to save a draft.",
    ),
) -> None:
    """Compose a post as a draft, or scheduled when --time is given."""
    store = get_store()
    account = store.get_account(account_id)
    if account is None:
        rprint(f"[red]Account not found:[/red] {account_id}")
        raise typer.Exit(1)

    scheduled_at = _parse_time(time) if time else None
    try:
        post = Post.compose(account, text, media_urls=media_url, scheduled_at=scheduled_at)
    except ValueError as exc:
        rprint(f"[red]Cannot create post:[/red] {exc}")
        raise typer.Exit(1)
    store.create_post(post)

    if scheduled_at and scheduled_at <= dt.datetime.now(dt.timezone.utc):
        rprint(
            "[yellow]Warning:[/yellow] scheduled time is in the past — "
            "post will run on the next scheduler pass."
        )
    rprint(
        f"\n[green]✓ {post.status.value.title()}[/green]\n"
        f"  Post ID  : [cyan]{post.id}[/cyan]\n"
        f"  Platform : {account.platform.value} (@{account.username})\n"
        f"  Time     : {_format_dt(scheduled_at)} UTC"
    )


# ---------------------------------------------------------------------------
# queue
# ---------------------------------------------------------------------------


@app.command()
def queue(
    status: Optional[PostStatus] = typer.Option(
        None, "--status", "-s", help="Filter by status."
    ),
    user_id: Optional[str] = typer.Option(None, "--user", help="Filter by user ID."),
) -> None:
    """List posts, soonest scheduled first."""
    store = get_store()
    posts = store.list_posts(user_id=user_id, status=status)

    if not posts:
        rprint("[yellow]No posts found.[/yellow]")
        stats = store.stats()
        if stats:
            rprint(f"[dim]{stats}[/dim]")
        return

    table = Table(title=f"📅 Posts — {len(posts)} item(s)", show_lines=False)
    table.add_column("ID", style="dim", width=12)
    table.add_column("Platform", width=10)
    table.add_column("Scheduled (UTC)", width=18)
    table.add_column("Status", width=13)
    table.add_column("Content (preview)", width=40)
    table.add_column("Error", style="red", width=30)

    for p in posts:
        table.add_row(
            p.id[:12],
            p.platform.value if p.platform else "?",
            _format_dt(p.scheduled_at),
            f"{_STATUS_EMOJI[p.status]} {p.status.value}",
            (p.content[:40] + "…") if len(p.content) > 40 else p.content,
            p.error_message or "",
        )

    console.print(table)


# ---------------------------------------------------------------------------
# retry
# ---------------------------------------------------------------------------


@app.command()
def retry(post_id: str = typer.Argument(..., help="Failed post ID")) -> None:
    """Re-queue a failed post for the next scheduler pass."""
    store = get_store()
    post = store.get_post(post_id)
    if post is None:
        rprint(f"[red]Post not found:[/red] {post_id}")
        raise typer.Exit(1)
    try:
        post.retry()
    except InvalidTransitionError as exc:
        rprint(f"[red]Cannot retry:[/red] {exc} (status is {post.status.value})")
        raise typer.Exit(1)
    store.update_post(post.id, {"status": post.status, "error_message": None})
    rprint(f"[green]✓ Re-queued[/green] [cyan]{post.id}[/cyan]")


# ---------------------------------------------------------------------------
# run-due / refresh-metrics
# ---------------------------------------------------------------------------


@app.command("run-due")
def run_due() -> None:
    """Publish every scheduled post that is due (scheduled_at <= now)."""
    store = get_store()
    with console.status("[bold]Publishing due posts…"):
        run = asyncio.run(run_scheduler(store))

    if not run.processed:
        rprint("[green]✓ No posts due.[/green]")
        return

    rprint(f"[bold]{run.processed} post(s) processed:[/bold]")
    for outcome in run.results:
        if outcome.success:
            rprint(f"  [cyan]{outcome.post_id}[/cyan]  [green]✓ {outcome.platform_post_id}[/green]")
        else:
            rprint(f"  [cyan]{outcome.post_id}[/cyan]  [red]✗ {outcome.error}[/red]")
    if run.failed:
        raise typer.Exit(1)


@app.command("refresh-metrics")
def refresh_metrics() -> None:
    """Fetch fresh engagement metrics for recently published posts."""
    store = get_store()
    with console.status("[bold]Fetching metrics…"):
        updated = asyncio.run(run_metrics_refresh(store))
    rprint(f"[green]✓ Updated metrics for {updated} post(s).[/green]")
