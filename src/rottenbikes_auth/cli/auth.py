"""CLI: rottenbikes auth login|register|confirm|status|logout"""

import asyncio
from typing import Optional

import click
from rich.console import Console

from rottenbikes_auth.config import Settings
from rottenbikes_auth.errors import SessionExpiredError
from rottenbikes_auth.links import parse_confirmation_link
from rottenbikes_auth.models.attempt import AttemptState, LoginAttempt
from rottenbikes_auth.models.session import Session

console = Console()


def _get_client(settings: Settings):
    from rottenbikes_auth.cli.main import _get_client
    return _get_client(settings)


def _run(coro):
    from rottenbikes_auth.cli.main import _run
    return _run(coro)


def _print_session(session: Session) -> None:
    if not session.is_logged_in:
        if session.last_username:
            console.print(f"[yellow]Not logged in (last user: {session.last_username}).[/yellow]")
        else:
            console.print("[yellow]Not logged in. Run `rottenbikes auth login`.[/yellow]")
        return
    if session.username is None:
        console.print("[green]Logged in[/green] (profile unavailable)")
    else:
        console.print(f"[green]Logged in[/green] as {session.username} (ID: {session.user_id})")


async def _settle_profile(client) -> None:
    """Wait for the background profile fetch so the summary is complete."""
    task = client.engine.profile_task
    if task is None:
        return
    (result,) = await asyncio.gather(task, return_exceptions=True)
    if isinstance(result, SessionExpiredError):
        return
    if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
        console.print(f"[yellow]Could not load profile: {result}[/yellow]")


async def _finish_attempt(client, attempt: LoginAttempt, wait: Optional[bool]) -> None:
    settings: Settings = client.settings
    console.print(f"[green]Magic link sent for {attempt.identifier}! Check your email.[/green]")
    if (settings.is_mobile if wait is None else wait):
        with console.status("Waiting for the link to be confirmed..."):
            await client.wait_for_login()
    else:
        link = click.prompt("Paste the confirmation link or token")
        with console.status("Confirming..."):
            await client.handle_confirmation_link(link)
    await _settle_profile(client)
    _print_session(client.session)


@click.group()
def auth():
    """Authentication commands."""


@auth.command("login")
@click.argument("identifier", required=False)
@click.option("--captcha", default=None, help="Captcha proof token")
@click.option("--wait/--no-wait", default=None,
              help="Wait for confirmation from another device (default on --mobile)")
@click.pass_obj
def auth_login(settings: Settings, identifier: Optional[str], captcha: Optional[str], wait: Optional[bool]):
    """Log in with a magic link sent to your email."""

    async def _login():
        async with _get_client(settings) as client:
            ident = identifier or click.prompt("Email or username")
            with console.status("Requesting magic link..."):
                attempt = await client.request_login(ident, captcha)
            await _finish_attempt(client, attempt, wait)

    _run(_login())


@auth.command("register")
@click.argument("username")
@click.argument("email")
@click.option("--captcha", default=None, help="Captcha proof token")
@click.option("--wait/--no-wait", default=None,
              help="Wait for confirmation from another device (default on --mobile)")
@click.pass_obj
def auth_register(settings: Settings, username: str, email: str, captcha: Optional[str], wait: Optional[bool]):
    """Create an account and log in once the emailed link is confirmed."""

    async def _register():
        async with _get_client(settings) as client:
            with console.status("Registering..."):
                attempt = await client.register(username, email, captcha)
            await _finish_attempt(client, attempt, wait)

    _run(_register())


@auth.command("confirm")
@click.argument("link")
@click.option("--origin", default=None, help="Override the origin tag carried by the link")
@click.pass_obj
def auth_confirm(settings: Settings, link: str, origin: Optional[str]):
    """Confirm a magic link (URL, deep link or bare token)."""

    async def _confirm():
        try:
            parsed = parse_confirmation_link(link)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="LINK")
        async with _get_client(settings) as client:
            link_origin = origin or (parsed.origin.value if parsed.origin else None)
            with console.status("Confirming..."):
                state = await client.handle_confirmation(parsed.token, link_origin)
            if state == AttemptState.CONFIRMED_REMOTE:
                return
            await _settle_profile(client)
            _print_session(client.session)

    _run(_confirm())


@auth.command("status")
@click.pass_obj
def auth_status(settings: Settings):
    """Show the stored session and check it with the server."""

    async def _status():
        async with _get_client(settings) as client:
            await _settle_profile(client)
            _print_session(client.session)

    _run(_status())


@auth.command("logout")
@click.pass_obj
def auth_logout(settings: Settings):
    """Forget the stored session token."""

    async def _logout():
        async with _get_client(settings) as client:
            was_logged_in = client.is_logged_in
            await client.logout()
        if not was_logged_in:
            console.print("[dim]Already logged out.[/dim]")

    _run(_logout())
