"""
CLI interface for Prompt Master.

Provides command-line access to accounts, generation, history and
administration.
"""

import logging
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prompt_master.config.loader import DEFAULT_CONFIG_PATH, load_config_or_default
from prompt_master.config.log_setup import setup_logging
from prompt_master.core.container import Services, build_services
from prompt_master.core.errors import PromptMasterError
from prompt_master.storage.models import PromptType

logger = logging.getLogger(__name__)

app = typer.Typer()
admin_app = typer.Typer(help="Administrator commands.")
app.add_typer(admin_app, name="admin")
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

PROMPT_TYPES = ", ".join(t.value for t in PromptType)


class _State:
    """Per-invocation state stored on the Typer context."""

    def __init__(self, config_path: str):
        self.config_path = config_path
        self.services: Optional[Services] = None


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {escape(message)}")
    sys.exit(EXIT_CODE_FAIL)


def _services(ctx: typer.Context) -> Services:
    """Build services on first use and run idempotent storage setup."""
    state: _State = ctx.obj
    if state.services is None:
        try:
            config = load_config_or_default(state.config_path)
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            _fail(f"Invalid configuration: {e}")
        setup_logging(config.logging)
        services = build_services(config)
        try:
            services.init_storage()
        except PromptMasterError as e:
            _fail(e.message)
        services.start()
        ctx.call_on_close(services.close)
        state.services = services
    return state.services


def _require_user(services: Services):
    try:
        return services.auth.require_user()
    except PromptMasterError as e:
        _fail(e.message)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: str = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
):
    """Prompt Master CLI."""
    ctx.obj = _State(config)
    if ctx.invoked_subcommand is None:
        console.print("Prompt Master - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize storage and seed the administrator account."""
    services = _services(ctx)
    console.print(f"[green]✓[/] Storage initialized ({services.config.backend} backend)")


@app.command()
def status(ctx: typer.Context):
    """Show backend, limits and the signed-in user."""
    services = _services(ctx)
    limits = services.config.rate_limit
    console.print(f"Backend: [bold]{services.config.backend}[/]")
    console.print(
        f"Rate limit: {limits.max_requests} requests per {limits.window_ms / 1000:g}s"
    )
    try:
        user = services.auth.get_current_user()
    except PromptMasterError as e:
        _fail(e.message)
    if user is None:
        console.print("Not signed in")
    else:
        console.print(f"Signed in as {escape(user.email)} ({user.role.value}, {user.credits} credits)")


@app.command()
def signup(
    ctx: typer.Context,
    name: str = typer.Option(..., "--name", "-n", help="Display name"),
    email: str = typer.Option(..., "--email", "-e", help="Email address"),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, confirmation_prompt=True
    ),
):
    """Create an account. New accounts start with 10 credits."""
    services = _services(ctx)
    try:
        user = services.auth.sign_up(email, password, name)
    except PromptMasterError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Account created for {escape(user.email)} with {user.credits} credits")


@app.command()
def login(
    ctx: typer.Context,
    email: str = typer.Option(..., "--email", "-e", help="Email address"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True),
):
    """Sign in and remember the session."""
    services = _services(ctx)
    try:
        user = services.auth.sign_in(email, password)
    except PromptMasterError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Signed in as {escape(user.name)}")


@app.command()
def logout(ctx: typer.Context):
    """Forget the stored session."""
    _services(ctx).auth.sign_out()
    console.print("[green]✓[/] Signed out")


@app.command()
def whoami(ctx: typer.Context):
    """Show the signed-in account."""
    user = _require_user(_services(ctx))
    console.print(f"{escape(user.name)} <{escape(user.email)}>")
    console.print(f"Role: {user.role.value}")
    console.print(f"Credits: {user.credits}")


@app.command()
def generate(
    ctx: typer.Context,
    prompt_type: str = typer.Argument(..., metavar="TYPE", help=f"One of: {PROMPT_TYPES}"),
    description: str = typer.Argument(..., help="What the system should do"),
):
    """Spend one credit to generate a specification document."""
    services = _services(ctx)
    user = _require_user(services)
    try:
        result = services.generation.generate(user.id, prompt_type, description)
    except PromptMasterError as e:
        # A refund may have changed the balance; keep the cached session in step
        try:
            services.auth.get_current_user()
        except PromptMasterError as refresh_error:
            logger.warning("Session refresh after failed generation failed: %s", refresh_error)
        _fail(e.message)

    services.auth.refresh_session(result.user)
    typer.echo(result.output)
    console.print(f"\n[dim]Credits remaining: {result.user.credits}[/]")


@app.command()
def history(
    ctx: typer.Context,
    full: bool = typer.Option(False, "--full", help="Print complete outputs"),
):
    """List your past generations, newest first."""
    services = _services(ctx)
    user = _require_user(services)
    try:
        entries = services.repository.get_user_history(user.id)
    except PromptMasterError as e:
        _fail(e.message)

    if not entries:
        console.print("[dim]No generations yet.[/]")
        return

    if full:
        for entry in entries:
            console.print(f"[bold]{entry.timestamp:%Y-%m-%d %H:%M}[/] {entry.type.value}: {escape(entry.prompt)}")
            typer.echo(entry.output)
            typer.echo()
        return

    table = Table(title="Generation History")
    table.add_column("Date")
    table.add_column("Type")
    table.add_column("Description")
    for entry in entries:
        table.add_row(
            f"{entry.timestamp:%Y-%m-%d %H:%M}",
            entry.type.value,
            escape(_truncate(entry.prompt, 60)),
        )
    console.print(table)


@app.command()
def profile(
    ctx: typer.Context,
    name: Optional[str] = typer.Option(None, "--name", "-n", help="New display name"),
    password: Optional[str] = typer.Option(None, "--password", "-p", help="New password"),
):
    """Update your name and/or password."""
    services = _services(ctx)
    user = _require_user(services)
    try:
        updated = services.auth.update_profile(user.id, name=name, password=password)
    except PromptMasterError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] Profile updated for {escape(updated.name)}")


@admin_app.command("users")
def admin_users(ctx: typer.Context):
    """List all accounts."""
    services = _services(ctx)
    actor = _require_user(services)
    try:
        users = services.admin.list_users(actor)
    except PromptMasterError as e:
        _fail(e.message)

    table = Table(title="Users")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Email")
    table.add_column("Role")
    table.add_column("Credits", justify="right")
    for user in users:
        table.add_row(user.id, escape(user.name), escape(user.email), user.role.value, str(user.credits))
    console.print(table)


@admin_app.command("add-credits")
def admin_add_credits(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Target user id"),
    amount: int = typer.Argument(..., help="Credits to add"),
):
    """Top up a user's balance."""
    services = _services(ctx)
    actor = _require_user(services)
    try:
        user = services.admin.add_credits(actor, user_id, amount)
    except PromptMasterError as e:
        _fail(e.message)
    services.auth.refresh_session(user)
    console.print(f"[green]✓[/] {user.email} now has {user.credits} credits")


@admin_app.command("remove-credits")
def admin_remove_credits(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Target user id"),
    amount: int = typer.Argument(..., help="Credits to remove"),
):
    """Remove credits from a user's balance."""
    services = _services(ctx)
    actor = _require_user(services)
    try:
        user = services.admin.remove_credits(actor, user_id, amount)
    except PromptMasterError as e:
        _fail(e.message)
    services.auth.refresh_session(user)
    console.print(f"[green]✓[/] {user.email} now has {user.credits} credits")


@admin_app.command("delete")
def admin_delete(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="Target user id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Permanently delete a user account."""
    services = _services(ctx)
    actor = _require_user(services)
    if not yes:
        typer.confirm(f"Delete user {user_id}? This cannot be undone.", abort=True)
    try:
        services.admin.delete_user(actor, user_id)
    except PromptMasterError as e:
        _fail(e.message)
    console.print(f"[green]✓[/] User {user_id} deleted")


@admin_app.command("metrics")
def admin_metrics(ctx: typer.Context):
    """Show system-wide usage metrics."""
    services = _services(ctx)
    actor = _require_user(services)
    try:
        metrics = services.admin.get_metrics(actor)
    except PromptMasterError as e:
        _fail(e.message)

    console.print("\n[bold]System Metrics[/bold]")
    console.print("-" * 40)
    console.print(f"Total users: {metrics.total_users}")
    console.print(f"Credits in circulation: {metrics.total_credits}")
    console.print(f"Total prompts: {metrics.total_prompts}")
    console.print(f"Active users (30 days): {metrics.active_users}")


def _truncate(text: str, width: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[:width - 1] + "…"


if __name__ == "__main__":
    app()
