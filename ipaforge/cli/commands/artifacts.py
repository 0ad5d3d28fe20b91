"""Artifact commands: ``upload``, ``list``, ``edit``, ``delete``, ``links``, ``stats``."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel
from rich.table import Table

from ipaforge.cli.commands._shared import console, human_size, open_service, operator_token
from ipaforge.models.artifacts import ArtifactMetadata, ArtifactPatch, PublishedArtifact


def _read_binary(path: Path) -> bytes:
    if not path.is_file():
        console.print(f"[bold red]File not found:[/bold red] {path}")
        raise typer.Exit(code=1)
    return path.read_bytes()


def _print_published(published: PublishedArtifact, title: str) -> None:
    a = published.artifact
    lines = [
        f"[bold]Artifact ID:[/bold]  {a.artifact_id}",
        f"[bold]App:[/bold]          {a.app_name} {a.version} ({a.bundle_id})",
        f"[bold]Size:[/bold]         {human_size(a.size_bytes)}",
        f"[bold]Signed:[/bold]       {a.signed_at.isoformat() if a.signed_at else 'no'}",
        "",
        f"[bold]Install:[/bold]      {published.links.install_link}",
        f"[bold]Direct:[/bold]       {published.links.direct_link}",
        f"[bold]Short:[/bold]        {published.links.short_link}",
        f"[bold]App page:[/bold]     {published.links.app_page_link}",
        f"[bold]TestFlight:[/bold]   {published.links.testflight_link}",
    ]
    if published.shortened_install_link:
        lines.append(f"[bold]Shortened:[/bold]    {published.shortened_install_link}")
    for warning in published.warnings:
        lines.append(f"[yellow]{warning}[/yellow]")
    console.print(Panel("\n".join(lines), title=f"[bold]{title}[/bold]", border_style="green"))


def upload_cmd(
    ctx: typer.Context,
    ipa: Path = typer.Argument(..., help="Path to the .ipa file."),
    app_name: str = typer.Option(..., "--name", "-n", help="Display name."),
    bundle_id: str = typer.Option(..., "--bundle-id", "-b", help="Bundle identifier."),
    version: str = typer.Option(..., "--version", "-v", help="Version string."),
    developer: str = typer.Option("", help="Developer name."),
    support_email: str = typer.Option("", help="Support e-mail address."),
    description: str = typer.Option("", help="App description."),
    changelog: str = typer.Option("", help="What's new in this version."),
    icon_url: str = typer.Option(None, help="Icon URL."),
    screenshot: list[str] = typer.Option([], help="Screenshot URL (repeatable)."),
    min_os: str = typer.Option("", help="Minimum iOS version."),
    slug: str = typer.Option("", help="URL slug (defaults to the app name)."),
    shorten: bool = typer.Option(True, "--shorten/--no-shorten", help="Shorten the install link."),
) -> None:
    """Upload an IPA and print its links."""
    data = _read_binary(ipa)
    metadata = ArtifactMetadata(
        app_name=app_name,
        bundle_id=bundle_id,
        version=version,
        app_slug=slug,
        developer=developer,
        support_email=support_email,
        description=description,
        changelog=changelog,
        icon_url=icon_url,
        screenshot_urls=screenshot,
        min_os_version=min_os,
    )
    with open_service(ctx) as service:
        published = service.upload(
            data, metadata, token=operator_token(ctx), shorten=shorten
        )
    _print_published(published, "Uploaded")


def list_cmd(ctx: typer.Context) -> None:
    """List uploaded IPAs with storage usage."""
    with open_service(ctx) as service:
        listing = service.list()

    if not listing.artifacts:
        console.print("[dim]No IPAs uploaded.[/dim]")
    else:
        table = Table(title="Uploaded IPAs")
        table.add_column("ID", style="cyan")
        table.add_column("App")
        table.add_column("Bundle ID")
        table.add_column("Version", style="green")
        table.add_column("Size", justify="right")
        table.add_column("Signed", justify="center")
        for a in listing.artifacts:
            signed = "[green]Yes[/green]" if a.is_signed else "[dim]No[/dim]"
            table.add_row(
                str(a.artifact_id), a.app_name, a.bundle_id, a.version,
                human_size(a.size_bytes), signed,
            )
        console.print(table)

    console.print(
        f"Storage: {human_size(listing.used_bytes)} / {human_size(listing.quota_bytes)} "
        f"({listing.usage_percent}%)"
    )


def edit_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact ID."),
    app_name: str = typer.Option(None, "--name", "-n"),
    bundle_id: str = typer.Option(None, "--bundle-id", "-b"),
    version: str = typer.Option(None, "--version", "-v"),
    developer: str = typer.Option(None),
    support_email: str = typer.Option(None),
    description: str = typer.Option(None),
    changelog: str = typer.Option(None),
    icon_url: str = typer.Option(None),
    min_os: str = typer.Option(None),
    ipa: Path = typer.Option(None, "--ipa", help="Replace the binary with this file."),
) -> None:
    """Edit metadata and optionally replace the binary. Links do not change."""
    patch = ArtifactPatch(
        app_name=app_name,
        bundle_id=bundle_id,
        version=version,
        developer=developer,
        support_email=support_email,
        description=description,
        changelog=changelog,
        icon_url=icon_url,
        min_os_version=min_os,
    )
    data = _read_binary(ipa) if ipa is not None else None
    with open_service(ctx) as service:
        published = service.edit(artifact_id, patch, data, token=operator_token(ctx))
    _print_published(published, "Updated")


def delete_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact ID."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete an IPA. Its published links stop working."""
    if not yes:
        typer.confirm(
            f"Delete artifact {artifact_id}? This cannot be undone.", abort=True
        )
    with open_service(ctx) as service:
        artifact = service.delete(artifact_id, token=operator_token(ctx))
    console.print(
        f"[green]Deleted[/green] {artifact.app_name} {artifact.version} ({artifact_id})"
    )


def links_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact ID."),
    shorten: bool = typer.Option(False, "--shorten", help="Also shorten the install link."),
) -> None:
    """Print the published links of an IPA."""
    with open_service(ctx) as service:
        published = service.get(artifact_id)
        if shorten:
            published = published.model_copy(
                update={"shortened_install_link": service.shorten_install_link(artifact_id)}
            )
    _print_published(published, "Links")


def stats_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact ID."),
) -> None:
    """Show share-page views and downloads."""
    with open_service(ctx) as service:
        stats = service.stats(artifact_id)
    console.print(
        f"[bold]{stats.app_name}[/bold]: {stats.views} views, {stats.downloads} downloads"
    )
