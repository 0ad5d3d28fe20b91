"""``ipaforge certs``: manage signing certificates."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from ipaforge.cli.commands._shared import console, open_service, operator_token
from ipaforge.models.certificates import CertificatePatch

certs_app = typer.Typer(help="Manage signing certificates.", no_args_is_help=True)


@certs_app.command("add")
def add_cmd(
    ctx: typer.Context,
    p12: Path = typer.Argument(..., help="Path to the .p12 key bundle."),
    provision: Path = typer.Argument(..., help="Path to the .mobileprovision profile."),
    name: str = typer.Option(..., "--name", "-n", help="Display name."),
    password: str = typer.Option(None, help="Password of the .p12 bundle."),
    description: str = typer.Option("", help="Free-form description."),
) -> None:
    """Add a certificate from its two credential files."""
    for path in (p12, provision):
        if not path.is_file():
            console.print(f"[bold red]File not found:[/bold red] {path}")
            raise typer.Exit(code=1)
    with open_service(ctx) as service:
        cert = service.add_certificate(
            p12.read_bytes(),
            provision.read_bytes(),
            name,
            password,
            description,
            token=operator_token(ctx),
        )
    console.print(f"[green]Added certificate[/green] {cert.id}: {cert.name}")


@certs_app.command("list")
def list_cmd(
    ctx: typer.Context,
    active_only: bool = typer.Option(False, "--active", help="Only active certificates."),
) -> None:
    """List certificates."""
    with open_service(ctx) as service:
        certs = service.list_certificates(active_only=active_only)
    if not certs:
        console.print("[dim]No certificates.[/dim]")
        return
    table = Table(title="Certificates")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Active", justify="center")
    table.add_column("Description")
    for c in certs:
        active = "[green]Yes[/green]" if c.is_active else "[red]No[/red]"
        table.add_row(str(c.id), c.name, active, c.description)
    console.print(table)


@certs_app.command("update")
def update_cmd(
    ctx: typer.Context,
    cert_id: int = typer.Argument(...),
    name: str = typer.Option(None),
    password: str = typer.Option(None),
    description: str = typer.Option(None),
    active: bool = typer.Option(None, "--active/--inactive"),
) -> None:
    """Rename, re-describe, or (de)activate a certificate."""
    patch = CertificatePatch(
        name=name, password=password, description=description, is_active=active
    )
    with open_service(ctx) as service:
        cert = service.update_certificate(cert_id, patch, token=operator_token(ctx))
    state = "active" if cert.is_active else "inactive"
    console.print(f"[green]Updated certificate[/green] {cert.id}: {cert.name} ({state})")


@certs_app.command("delete")
def delete_cmd(
    ctx: typer.Context,
    cert_id: int = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a certificate and its files. Prefer ``update --inactive``."""
    if not yes:
        typer.confirm(f"Delete certificate {cert_id}? This cannot be undone.", abort=True)
    with open_service(ctx) as service:
        service.delete_certificate(cert_id, token=operator_token(ctx))
    console.print(f"[green]Deleted certificate[/green] {cert_id}")
