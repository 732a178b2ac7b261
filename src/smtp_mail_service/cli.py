# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for the SMTP mail service.

The CLI works directly on the configured database through MailService, so
it needs no running server.

Usage:
    smtp-mail serve
    smtp-mail profiles list
    smtp-mail profiles add primary --host smtp.example.com --port 587 \\
        --from-email noreply@example.com --encryption starttls --default
    smtp-mail profiles test 1
    smtp-mail send --profile 1 --to bob@example.com --subject Hi --body "<p>hi</p>"
    smtp-mail history --status failed
    smtp-mail templates list
"""

from __future__ import annotations

import asyncio
import base64
import dataclasses
import json
import mimetypes
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from .core import MailService
from .errors import MailServiceError, TransportError
from .logger import configure_logging
from .models import (
    AttachmentPayload,
    Encryption,
    ProfileCreate,
    SendRequest,
    TemplateCreate,
)
from .settings import Settings, load_settings

console = Console()
err_console = Console(stderr=True)


def run_async(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    console.print_json(json.dumps(data, indent=2, default=str))


def _dump(value: Any) -> Any:
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def with_service(ctx: click.Context, operation: Callable[[MailService], Awaitable[Any]]) -> Any:
    """Run ``operation`` against a started MailService, exiting 1 on service errors."""
    settings: Settings = ctx.obj["settings"]
    try:
        svc = MailService.from_settings(settings)
    except ValueError as exc:
        print_error(str(exc))
        sys.exit(1)

    async def _run():
        await svc.start()
        try:
            return await operation(svc)
        finally:
            await svc.stop()

    try:
        return run_async(_run())
    except TransportError as exc:
        print_error(exc.message)
        if exc.record is not None and exc.record.id is not None:
            err_console.print(f"[dim]Failed attempt recorded as delivery #{exc.record.id}[/dim]")
        sys.exit(1)
    except MailServiceError as exc:
        print_error(exc.message)
        sys.exit(1)


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Path to the INI config file.")
@click.option("--db", "db_path", help="Override the SQLite database path.")
@click.version_option(package_name="smtp-mail-service")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]) -> None:
    """Manage SMTP profiles, send mail and inspect delivery history."""
    settings = load_settings(config_path)
    if db_path:
        settings = dataclasses.replace(settings, db_path=db_path)
    configure_logging(settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ============================================================================
# serve
# ============================================================================

@main.command("serve")
@click.option("--host", "-h", default=None, help="Host to bind to.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on.")
@click.pass_context
def serve_cmd(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """Run the HTTP API server."""
    from .server import serve

    settings: Settings = ctx.obj["settings"]
    overrides = {k: v for k, v in (("http_host", host), ("http_port", port)) if v is not None}
    serve(dataclasses.replace(settings, **overrides))


# ============================================================================
# profiles
# ============================================================================

@main.group("profiles", invoke_without_command=True)
@click.pass_context
def profiles(ctx: click.Context) -> None:
    """Manage SMTP server profiles."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@profiles.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def profiles_list(ctx: click.Context, as_json: bool) -> None:
    """List stored profiles."""
    profile_list = with_service(ctx, lambda svc: svc.list_profiles())

    if as_json:
        print_json(_dump(profile_list))
        return

    if not profile_list:
        console.print("[dim]No SMTP profiles found.[/dim]")
        return

    table = Table(title="SMTP Profiles")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Server")
    table.add_column("From")
    table.add_column("Encryption")
    table.add_column("Default", justify="center")

    for p in profile_list:
        table.add_row(
            str(p.id),
            p.name,
            f"{p.host}:{p.port}",
            p.from_email,
            p.encryption.value,
            "[green]✓[/green]" if p.is_default else "[dim]-[/dim]",
        )

    console.print(table)


@profiles.command("add")
@click.argument("name")
@click.option("--host", "-h", required=True, help="SMTP server hostname.")
@click.option("--port", "-p", type=int, required=True, help="SMTP server port.")
@click.option("--username", "-u", help="SMTP username.")
@click.option("--password", help="SMTP password (stored encrypted).")
@click.option("--from-email", required=True, help="Sender address.")
@click.option("--from-name", help="Sender display name.")
@click.option(
    "--encryption",
    type=click.Choice([e.value for e in Encryption]),
    default=Encryption.NONE.value,
    show_default=True,
    help="Transport security.",
)
@click.option("--default", "is_default", is_flag=True, help="Make this the default profile.")
@click.pass_context
def profiles_add(
    ctx: click.Context,
    name: str,
    host: str,
    port: int,
    username: Optional[str],
    password: Optional[str],
    from_email: str,
    from_name: Optional[str],
    encryption: str,
    is_default: bool,
) -> None:
    """Add an SMTP server profile."""
    try:
        payload = ProfileCreate(
            name=name,
            host=host,
            port=port,
            username=username,
            password=password,
            from_email=from_email,
            from_name=from_name,
            encryption=Encryption(encryption),
            is_default=is_default,
        )
    except PydanticValidationError as e:
        print_error(f"Invalid profile: {e.errors()[0]['msg']}")
        sys.exit(1)

    profile = with_service(ctx, lambda svc: svc.create_profile(payload))
    print_success(f"Profile '{profile.name}' created with id {profile.id}.")


@profiles.command("set-default")
@click.argument("profile_id", type=int)
@click.pass_context
def profiles_set_default(ctx: click.Context, profile_id: int) -> None:
    """Make a profile the default one."""
    profile = with_service(ctx, lambda svc: svc.set_default_profile(profile_id))
    print_success(f"Profile '{profile.name}' is now the default.")


@profiles.command("test")
@click.argument("profile_id", type=int)
@click.option("--password", help="Test with this password instead of the stored one.")
@click.pass_context
def profiles_test(ctx: click.Context, profile_id: int, password: Optional[str]) -> None:
    """Check that a profile can connect and authenticate."""
    with_service(ctx, lambda svc: svc.test_connection(profile_id, password=password))
    print_success(f"Connection test for profile {profile_id} succeeded.")


@profiles.command("delete")
@click.argument("profile_id", type=int)
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def profiles_delete(ctx: click.Context, profile_id: int, force: bool) -> None:
    """Delete a profile."""
    if not force and not click.confirm(f"Delete SMTP profile {profile_id}?"):
        console.print("[dim]Aborted.[/dim]")
        return
    with_service(ctx, lambda svc: svc.delete_profile(profile_id))
    print_success(f"Profile {profile_id} deleted.")


# ============================================================================
# send
# ============================================================================

def _read_attachment(path: Path) -> AttachmentPayload:
    content_type, _ = mimetypes.guess_type(path.name)
    return AttachmentPayload(
        filename=path.name,
        content=base64.b64encode(path.read_bytes()).decode("ascii"),
        content_type=content_type,
    )


@main.command("send")
@click.option("--profile", "profile_id", type=int, required=True, help="SMTP profile id.")
@click.option("--to", "to", multiple=True, required=True, help="Recipient (repeatable).")
@click.option("--cc", multiple=True, help="Cc recipient (repeatable).")
@click.option("--bcc", multiple=True, help="Bcc recipient (repeatable).")
@click.option("--subject", "-s", default="", help="Subject line.")
@click.option("--body", "-b", default="", help="HTML body.")
@click.option("--body-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), help="Read the HTML body from a file.")
@click.option("--template", "template_id", type=int, help="Template filling an empty subject or body.")
@click.option("--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="File to attach (repeatable).")
@click.pass_context
def send_cmd(
    ctx: click.Context,
    profile_id: int,
    to: tuple[str, ...],
    cc: tuple[str, ...],
    bcc: tuple[str, ...],
    subject: str,
    body: str,
    body_file: Optional[Path],
    template_id: Optional[int],
    attachments: tuple[Path, ...],
) -> None:
    """Send one HTML message."""
    if body_file is not None:
        body = body_file.read_text(encoding="utf-8")
    try:
        request = SendRequest(
            smtp_config_id=profile_id,
            to=list(to),
            cc=list(cc),
            bcc=list(bcc),
            subject=subject,
            body=body,
            template_id=template_id,
            attachments=[_read_attachment(p) for p in attachments],
        )
    except PydanticValidationError as e:
        print_error(f"Invalid request: {e.errors()[0]['msg']}")
        sys.exit(1)

    record = with_service(ctx, lambda svc: svc.send_email(request))
    print_success(f"Message sent to {record.to_email} (delivery #{record.id}).")


# ============================================================================
# history
# ============================================================================

@main.command("history")
@click.option("--status", type=click.Choice(["all", "success", "failed"]), default="all", show_default=True)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--page-size", type=int, default=10, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history_cmd(ctx: click.Context, status: str, page: int, page_size: int, as_json: bool) -> None:
    """Show delivery history, newest first."""
    result = with_service(ctx, lambda svc: svc.list_history(page=page, page_size=page_size, status=status))

    if as_json:
        print_json({**result, "list": _dump(result["list"])})
        return

    if not result["list"]:
        console.print("[dim]No delivery records found.[/dim]")
        return

    table = Table(title=f"Delivery history (page {result['page']}, {result['total']} total)")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Sent at")
    table.add_column("Profile", justify="right")
    table.add_column("To")
    table.add_column("Subject")
    table.add_column("Status")
    table.add_column("Error")

    for rec in result["list"]:
        ok = rec.status.value == "success"
        table.add_row(
            str(rec.id),
            rec.sent_at,
            str(rec.smtp_config_id),
            rec.to_email,
            rec.subject,
            "[green]success[/green]" if ok else "[red]failed[/red]",
            rec.error_message or "-",
        )

    console.print(table)


# ============================================================================
# templates
# ============================================================================

@main.group("templates", invoke_without_command=True)
@click.pass_context
def templates(ctx: click.Context) -> None:
    """Manage mail templates."""
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@templates.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def templates_list(ctx: click.Context, as_json: bool) -> None:
    """List stored templates."""
    template_list = with_service(ctx, lambda svc: svc.list_templates())

    if as_json:
        print_json(_dump(template_list))
        return

    if not template_list:
        console.print("[dim]No templates found.[/dim]")
        return

    table = Table(title="Mail templates")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name")
    table.add_column("Subject")
    table.add_column("Updated")

    for t in template_list:
        table.add_row(str(t.id), t.name, t.subject, t.updated_at or "-")

    console.print(table)


@templates.command("add")
@click.argument("name")
@click.option("--subject", "-s", required=True, help="Subject line.")
@click.option("--body-file", required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path), help="HTML body file.")
@click.pass_context
def templates_add(ctx: click.Context, name: str, subject: str, body_file: Path) -> None:
    """Add a template from an HTML file."""
    try:
        payload = TemplateCreate(name=name, subject=subject, body=body_file.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        print_error(f"Invalid template: {e.errors()[0]['msg']}")
        sys.exit(1)

    template = with_service(ctx, lambda svc: svc.create_template(payload))
    print_success(f"Template '{template.name}' created with id {template.id}.")


if __name__ == "__main__":
    main()
