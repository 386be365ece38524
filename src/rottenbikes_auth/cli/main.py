"""
RottenBikes CLI: `rottenbikes` command.

Commands:
  rottenbikes auth login [IDENTIFIER]      Request a magic link and log in
  rottenbikes auth register USER EMAIL     Create an account
  rottenbikes auth confirm LINK            Confirm a magic link on this device
  rottenbikes auth status                  Show and verify the stored session
  rottenbikes auth logout                  Forget the stored session
"""

import asyncio
import logging
from typing import Any, Coroutine, Optional

try:
    import click
    from rich.console import Console
    from rich.logging import RichHandler
except ImportError:
    raise SystemExit("CLI requires extras: pip install rottenbikes-auth[cli]")

from rottenbikes_auth.client import AsyncRottenBikes
from rottenbikes_auth.config import Settings, load_settings
from rottenbikes_auth.errors import RottenBikesError
from rottenbikes_auth.notifications import CallbackNotifier, Notification, NotificationKind

console = Console()

_STYLES = {
    NotificationKind.SUCCESS: "green",
    NotificationKind.INFO: "cyan",
    NotificationKind.ERROR: "red",
}


def _print_notification(notification: Notification) -> None:
    console.print(f"[{_STYLES[notification.kind]}]{notification.message}[/]")


def _get_client(settings: Settings) -> AsyncRottenBikes:
    return AsyncRottenBikes(settings=settings, notifier=CallbackNotifier(_print_notification))


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    try:
        return asyncio.run(coro)
    except RottenBikesError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1)


def _setup_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


@click.group()
@click.version_option("0.1.0")
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Config file (default ~/.rottenbikes/config.json)")
@click.option("--api-url", default=None, help="RottenBikes API base URL")
@click.option("--mobile/--web", "mobile", default=None, help="Act as the mobile app or as a web client")
@click.option("-v", "--verbose", count=True, help="Log more (-vv for debug)")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], api_url: Optional[str],
         mobile: Optional[bool], verbose: int):
    """RottenBikes CLI: passwordless login for the RottenBikes API."""
    _setup_logging(verbose)
    client_type = None if mobile is None else ("mobile" if mobile else "web")
    try:
        ctx.obj = load_settings(config_path, api_url=api_url, client_type=client_type)
    except ValueError as e:
        raise click.BadParameter(str(e))


# Register subcommands from separate modules
from rottenbikes_auth.cli.auth import auth  # noqa: E402

main.add_command(auth)


if __name__ == "__main__":
    main()
