"""
Main CLI entry point.
Usage: autopost [COMMAND]
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from config.settings import settings
from src.cli.accounts import app as accounts_app
from src.cli.publish import app as publish_app

app = typer.Typer(
    name="autopost",
    help="📣 Scheduled publishing for Twitter/X, Instagram and Facebook",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

console = Console()

# Register sub-apps
app.add_typer(publish_app, name="publish", help="📤 Compose, queue and publish posts")
app.add_typer(accounts_app, name="accounts", help="🔗 Connected social accounts")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


@app.command()
def serve(
    host: str = typer.Option(settings.host, "--host"),
    port: int = typer.Option(settings.port, "--port"),
    no_timer: bool = typer.Option(
        False, "--no-timer", help="Only serve HTTP; rely on an external cron for the trigger."
    ),
) -> None:
    """Run the web API with the in-process scheduler tick."""
    import uvicorn

    from src.api.app import create_app

    uvicorn.run(create_app(start_timer=not no_timer), host=host, port=port, log_config=None)


if __name__ == "__main__":
    app()
