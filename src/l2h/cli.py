"""l2h CLI - run nodes and manage their bindings."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, NoReturn

import click
from pydantic import ValidationError as SettingsError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from l2h import __version__
from l2h.core.config import NodeConfig, NodeRole
from l2h.core.exceptions import L2HError, format_error_for_user
from l2h.core.logging import configure_logging
from l2h.security.validation import (
    contains_sensitive_word,
    is_valid_path,
    validate_admin_password,
)
from l2h.storage.store import AdminSettings, BindingStore

console = Console()

BANNER = """
 ██╗     ██████╗ ██╗  ██╗
 ██║     ╚════██╗██║  ██║
 ██║      █████╔╝███████║
 ██║     ██╔═══╝ ██╔══██║
 ███████╗███████╗██║  ██║
 ╚══════╝╚══════╝╚═╝  ╚═╝
   Path bindings, tunneled
"""


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {format_error_for_user(error)}")
    sys.exit(1)


def _build_config(ctx: click.Context, **overrides: Any) -> NodeConfig:
    params = dict(ctx.obj or {})
    config_file = params.pop("config_file", None)
    params.update(overrides)
    values = {k: v for k, v in params.items() if v is not None}
    try:
        if config_file:
            return NodeConfig.from_file(config_file, **values)
        return NodeConfig(**values)
    except (SettingsError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        sys.exit(1)


def _reject_sensitive_path(path: str) -> None:
    """Binding paths must not contain a guessable word such as ``admin`` or ``api``."""
    if contains_sensitive_word(path):
        console.print(f"[red]Error:[/red] path '{path}' contains a sensitive word")
        sys.exit(1)


@contextmanager
def _open_store(config: NodeConfig) -> Iterator[BindingStore]:
    store = BindingStore(config.effective_db_path)
    try:
        store.initialize()
        yield store
    finally:
        store.close()


@click.group()
@click.option(
    "--config", "-c",
    "config_file",
    type=click.Path(exists=True),
    help="Path to YAML or TOML config file",
)
@click.option(
    "--role", "-r",
    type=click.Choice([r.value for r in NodeRole]),
    default=None,
    help="Node role: front (public) or back (private). Default: front",
)
@click.option("--data-dir", default=None, help="Directory holding the database")
@click.option("--db", "db_path", default=None, help="Explicit database file path")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"]),
    default=None,
    help="Log level (default: info)",
)
@click.option("--json-logs", "log_json", is_flag=True, help="Emit JSON log lines")
@click.pass_context
def main(
    ctx: click.Context,
    config_file: str | None,
    role: str | None,
    data_dir: str | None,
    db_path: str | None,
    log_level: str | None,
    log_json: bool,
):
    """l2h - expose ports behind NAT at paths on a public node.

    \b
    Examples:
        l2h init                          Configure the admin console
        l2h serve                         Run a front node on :55080
        l2h --role back serve             Run a back node on :55055
        l2h paths add shop 9001           Bind /shop to port 9001
        l2h --role back link URL KEY      Point a back node at its front node
        l2h --role back register shop 9001
    """
    ctx.ensure_object(dict)
    ctx.obj.update(
        config_file=config_file,
        role=role,
        data_dir=data_dir,
        db_path=db_path,
        log_level=log_level,
        log_json=log_json or None,
    )


@main.command()
def version():
    """Show version information."""
    import platform

    console.print(BANNER, style="cyan")
    console.print(f"Version: {__version__}")
    console.print(f"Python: {platform.python_version()}")


@main.command()
@click.option("--host", default=None, help="Bind address (default: 0.0.0.0)")
@click.option("--port", "-p", type=int, default=None, help="Bind port (default: 55080 front, 55055 back)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None):
    """Run a node server."""
    from l2h.server.node import run_node

    config = _build_config(ctx, host=host, port=port)
    configure_logging(config.log_level, json=config.log_json)

    console.print(BANNER, style="cyan")
    console.print(
        f"Starting {config.role.value} node on {config.host}:{config.effective_port}...",
        style="yellow",
    )
    console.print(f"Database: {config.effective_db_path}", style="dim")

    with _open_store(config) as store:
        settings = store.get_settings()
    if settings is None:
        console.print(
            "Admin console: not configured (run [cyan]l2h init[/cyan] first)", style="dim"
        )
    else:
        console.print(f"Admin console: /{settings.admin_path}/", style="green")

    try:
        asyncio.run(run_node(config))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")


@main.command()
@click.option("--admin-path", prompt="Admin path", default="admin", help="URL segment for the admin console")
@click.option("--username", prompt="Admin username", help="Admin username")
@click.option(
    "--password",
    prompt="Admin password",
    hide_input=True,
    confirmation_prompt=True,
    help="Admin password",
)
@click.option("--email", prompt="Email (optional)", default="", show_default=False, help="Contact email")
@click.pass_context
def init(ctx: click.Context, admin_path: str, username: str, password: str, email: str):
    """Configure the admin console.

    Re-running overwrites the existing settings.
    """
    admin_path = admin_path.strip().strip("/")
    if not is_valid_path(admin_path):
        console.print(f"[red]Error:[/red] invalid admin path: {admin_path!r}")
        sys.exit(1)

    if contains_sensitive_word(admin_path):
        console.print(
            f"[yellow]Warning:[/yellow] '{admin_path}' contains a common word and is easy to guess."
        )

    config = _build_config(ctx)
    try:
        validate_admin_password(password)
        with _open_store(config) as store:
            store.upsert_settings(
                AdminSettings(
                    admin_path=admin_path,
                    username=username,
                    password=password,
                    email=email or None,
                )
            )
    except L2HError as e:
        _fail(e)

    console.print(
        Panel(
            f"[green]Admin console configured.[/green]\n\n"
            f"[bold]Path:[/bold] /{admin_path}/\n"
            f"[bold]Username:[/bold] {username}\n"
            f"[bold]Database:[/bold] {config.effective_db_path}",
            title="l2h init",
            border_style="green",
        )
    )


@main.group()
def paths():
    """Manage path bindings on this node."""
    pass


@paths.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def paths_list(ctx: click.Context, json_output: bool):
    """List bindings, newest first."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            bindings = store.list_bindings()
    except L2HError as e:
        _fail(e)

    if json_output:
        console.print(json.dumps([b.to_dict() for b in bindings], indent=2))
        return

    if not bindings:
        console.print("[dim]No paths registered[/dim]")
        return

    table = Table(title="Bindings")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Path", style="cyan")
    table.add_column("Target", justify="right")
    table.add_column("Password", justify="center")
    table.add_column("Created At")

    for binding in bindings:
        table.add_row(
            str(binding.id),
            f"/{binding.path}",
            str(binding.target),
            "[yellow]Yes[/yellow]" if binding.has_password else "No",
            binding.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@paths.command("add")
@click.argument("path")
@click.argument("target", type=int)
@click.option("--password", default=None, help="Require this password to open the path")
@click.pass_context
def paths_add(ctx: click.Context, path: str, target: int, password: str | None):
    """Bind PATH to local port TARGET."""
    _reject_sensitive_path(path)
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            binding_id = store.add_binding(path, password, target)
    except L2HError as e:
        _fail(e)

    console.print(f"[green]Added[/green] /{path} -> {target} (id {binding_id})")


@paths.command("delete")
@click.argument("binding_id", type=int)
@click.pass_context
def paths_delete(ctx: click.Context, binding_id: int):
    """Delete the binding with BINDING_ID."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            store.delete_binding(binding_id)
    except L2HError as e:
        _fail(e)

    console.print(f"[green]Deleted[/green] binding {binding_id}")


@main.group()
def keys():
    """Manage API keys that let back nodes register paths."""
    pass


@keys.command("create")
@click.argument("name")
@click.option("--days", type=int, default=0, help="Days until expiry (0 = never)")
@click.pass_context
def keys_create(ctx: click.Context, name: str, days: int):
    """Generate a new API key called NAME."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            key = store.generate_api_key(name, days)
    except L2HError as e:
        _fail(e)

    expiry = f"expires in {days} days" if days else "never expires"
    console.print(
        Panel(
            f"[bold]{key}[/bold]\n\n[dim]{name}, {expiry}[/dim]",
            title="API key",
            border_style="green",
        )
    )


@keys.command("list")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def keys_list(ctx: click.Context, json_output: bool):
    """List API keys."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            api_keys = store.list_api_keys()
    except L2HError as e:
        _fail(e)

    if json_output:
        console.print(json.dumps([k.to_dict() for k in api_keys], indent=2))
        return

    if not api_keys:
        console.print("[dim]No API keys[/dim]")
        return

    table = Table(title="API Keys")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Key")
    table.add_column("Expires")
    table.add_column("Uses", justify="right")

    for api_key in api_keys:
        table.add_row(
            str(api_key.id),
            api_key.name,
            api_key.key[:8] + "...",
            api_key.expires_at.strftime("%Y-%m-%d") if api_key.expires_at else "never",
            str(api_key.usage_count),
        )

    console.print(table)


@keys.command("delete")
@click.argument("key_id", type=int)
@click.pass_context
def keys_delete(ctx: click.Context, key_id: int):
    """Delete the API key with KEY_ID."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            store.delete_api_key(key_id)
    except L2HError as e:
        _fail(e)

    console.print(f"[green]Deleted[/green] API key {key_id}")


@main.command()
@click.argument("server_url")
@click.argument("api_key")
@click.pass_context
def link(ctx: click.Context, server_url: str, api_key: str):
    """Store the front node URL and API key on this (back) node."""
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            store.set_server_link(server_url, api_key)
    except L2HError as e:
        _fail(e)

    console.print(f"[green]Linked[/green] to {server_url.rstrip('/')}")


@main.command()
@click.argument("path")
@click.argument("target", type=int)
@click.option("--password", default=None, help="Require this password to open the path")
@click.pass_context
def register(ctx: click.Context, path: str, target: int, password: str | None):
    """Register PATH -> TARGET on the linked front node."""
    _reject_sensitive_path(path)
    config = _build_config(ctx)
    try:
        with _open_store(config) as store:
            server_link = store.get_server_link()
    except L2HError as e:
        _fail(e)

    if server_link is None:
        console.print(
            "[red]Error:[/red] no front node linked (run [cyan]l2h --role back link URL KEY[/cyan])"
        )
        sys.exit(1)

    try:
        asyncio.run(_register_async(server_link, path, target, password))
    except L2HError as e:
        _fail(e)

    console.print(
        f"[green]Registered[/green] {server_link.server_url}/{path} -> local port {target}"
    )


async def _register_async(server_link: Any, path: str, target: int, password: str | None) -> None:
    from l2h.client.registrar import FrontNodeClient

    async with FrontNodeClient.from_link(server_link) as client:
        await client.register(path, target, password)


if __name__ == "__main__":
    main()
