"""
CLI interface for Quota Gateway.

Provides command-line access to usage reports, one-off chat requests and a
development server.
"""

import json
import sys
from typing import Optional
from wsgiref.simple_server import make_server

import typer
import yaml
from rich.console import Console
from rich.table import Table

from quota_gateway.api.handler import RequestHandler
from quota_gateway.api.wsgi import make_wsgi_app
from quota_gateway.config.loader import GatewayConfig, load_gateway_config
from quota_gateway.core.budget import remaining_quota
from quota_gateway.core.day_key import DayKeyDeriver
from quota_gateway.core.errors import GatewayError
from quota_gateway.sdk.openai_client import CompletionGateway
from quota_gateway.storage.repository import (
    SQLiteUsageStore,
    open_usage_store,
    usage_key
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to gateway YAML configuration"
)


def _load_config(path: Optional[str]) -> GatewayConfig:
    """Load configuration from path, or defaults if no path given."""
    if path is None:
        return GatewayConfig()
    try:
        return load_gateway_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _build_handler(config: GatewayConfig) -> RequestHandler:
    storage = open_usage_store(config)
    return RequestHandler(config, storage, CompletionGateway(config))


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Quota Gateway CLI."""
    if ctx.invoked_subcommand is None:
        console.print("Quota Gateway - Use --help to see available commands")


@app.command()
def init(config: Optional[str] = ConfigOption):
    """Initialize the usage database."""
    settings = _load_config(config)
    try:
        SQLiteUsageStore(settings.db_path, settings.store_namespace).close()
        console.print(f"[green]✓[/] Database initialized at {settings.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    email: str = typer.Argument(..., help="User email to look up"),
    config: Optional[str] = ConfigOption
):
    """Show today's token usage for one user."""
    settings = _load_config(config)
    try:
        storage = open_usage_store(settings)
        day_key = DayKeyDeriver(settings.timezone).derive()
        record = storage.store.get(usage_key(email, day_key))
    except GatewayError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Usage for {email} on {day_key}")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Used today", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_row(
        str(record.input_tokens),
        str(record.output_tokens),
        str(record.total_tokens),
        str(remaining_quota(record, settings.daily_limit))
    )
    console.print(table)
    if storage.degraded:
        console.print("[yellow]Durable store unavailable; showing in-memory fallback.[/]")


@app.command()
def report(
    day: Optional[str] = typer.Option(
        None,
        "--day",
        "-d",
        help="Day key (YYYY-MM-DD), defaults to today"
    ),
    config: Optional[str] = ConfigOption
):
    """Show token usage of every user for one day."""
    settings = _load_config(config)
    try:
        storage = open_usage_store(settings)
        day_key = day or DayKeyDeriver(settings.timezone).derive()
        rows = storage.store.list_day(day_key)
    except GatewayError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)

    if not rows:
        console.print(f"\n[dim]No usage recorded for {day_key}.[/]")
        return

    table = Table(title=f"Usage on {day_key} (limit {settings.daily_limit})")
    table.add_column("User")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Remaining", justify="right")
    for user, record in rows:
        remaining = remaining_quota(record, settings.daily_limit)
        style = "red" if remaining == 0 else None
        table.add_row(
            user,
            str(record.input_tokens),
            str(record.output_tokens),
            str(record.total_tokens),
            str(remaining),
            style=style
        )
    console.print(table)


@app.command()
def chat(
    email: str = typer.Argument(..., help="User email the request is charged to"),
    message: str = typer.Argument(..., help="Message to send"),
    config: Optional[str] = ConfigOption
):
    """Send one chat message through the gateway."""
    settings = _load_config(config)
    try:
        handler = _build_handler(settings)
    except GatewayError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)

    body = json.dumps({"email": email, "messages": [{"role": "user", "content": message}]})
    response = handler.handle("POST", body)

    if response.status_code != 200:
        error = (response.body or {}).get("error", "Unknown error")
        console.print(f"[red]Error ({response.status_code}):[/] {error}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(response.body["reply"])
    usage_data = response.body["usage"]
    console.print(
        f"\n[dim]{usage_data['total_tokens']} tokens this call, "
        f"{usage_data['used_today']} used today, "
        f"{usage_data['remaining_today']} remaining "
        f"({response.body['storage']} storage)[/]"
    )


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8888, "--port", "-p", help="Port to listen on"),
    config: Optional[str] = ConfigOption
):
    """Serve the chat endpoint with the WSGI reference server."""
    settings = _load_config(config)
    try:
        handler = _build_handler(settings)
    except GatewayError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)

    with make_server(host, port, make_wsgi_app(handler)) as server:
        console.print(f"Serving on http://{host}:{port} ({handler.storage.backend.value} storage)")
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            console.print("Stopped")


if __name__ == "__main__":
    app()
