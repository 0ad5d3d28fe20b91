"""``ipaforge repo``: publish to and curate the repository manifest."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import typer
from rich.table import Table

from ipaforge.cli.commands._shared import console, open_service, operator_token
from ipaforge.models.manifest import (
    AddNews,
    RemoveApp,
    RemoveNews,
    RepoNews,
    RepositoryManifest,
    UpdateStore,
)

repo_app = typer.Typer(help="Publish to the repository manifest.", no_args_is_help=True)


def _print_apps(manifest: RepositoryManifest) -> None:
    table = Table(title=f"{manifest.name} ({manifest.identifier})")
    table.add_column("Bundle ID", style="cyan")
    table.add_column("Name")
    table.add_column("Versions (newest first)", style="green")
    for app in manifest.apps:
        table.add_row(
            app.bundle_identifier, app.name, ", ".join(v.version for v in app.versions)
        )
    console.print(table)


@repo_app.command("sync")
def sync_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact to publish."),
) -> None:
    """Merge an uploaded IPA into the manifest."""
    with open_service(ctx) as service:
        manifest = service.sync(artifact_id, token=operator_token(ctx))
    _print_apps(manifest)


@repo_app.command("show")
def show_cmd(ctx: typer.Context) -> None:
    """Summarize the current manifest."""
    with open_service(ctx) as service:
        manifest = service.manifest.current()
        revision = service.manifest.revision
    _print_apps(manifest)
    console.print(f"[dim]{len(manifest.news)} news item(s), revision {revision}[/dim]")


@repo_app.command("render")
def render_cmd(
    ctx: typer.Context,
    output: Path = typer.Option(
        None, "--output", "-o", help="Write to a file instead of stdout."
    ),
) -> None:
    """Print the installer document (validated)."""
    with open_service(ctx) as service:
        document = service.render_manifest()
    text = json.dumps(document, indent=2, ensure_ascii=False)
    if output is None:
        console.print_json(text)
    else:
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")


@repo_app.command("remove-app")
def remove_app_cmd(
    ctx: typer.Context,
    bundle_id: str = typer.Argument(...),
) -> None:
    """Remove an app and all its versions from the manifest."""
    with open_service(ctx) as service:
        service.apply_manifest_op(
            RemoveApp(bundle_identifier=bundle_id), token=operator_token(ctx)
        )
    console.print(f"[green]Removed[/green] {bundle_id}")


@repo_app.command("add-news")
def add_news_cmd(
    ctx: typer.Context,
    identifier: str = typer.Argument(..., help="Unique news identifier."),
    title: str = typer.Option(..., "--title", "-t"),
    caption: str = typer.Option("", "--caption", "-c"),
    tint_color: str = typer.Option(None, help="Defaults to the store tint color."),
    image_url: str = typer.Option(None),
    app_id: str = typer.Option(None, help="Bundle identifier the news refers to."),
    notify: bool = typer.Option(False, "--notify/--no-notify"),
) -> None:
    """Add or replace a news item."""
    with open_service(ctx) as service:
        news = RepoNews(
            identifier=identifier,
            title=title,
            caption=caption,
            date=datetime.now(timezone.utc),
            tint_color=tint_color or service.manifest.current().tint_color,
            image_url=image_url,
            notify=notify,
            app_id=app_id,
        )
        service.apply_manifest_op(AddNews(news=news), token=operator_token(ctx))
    console.print(f"[green]Published news[/green] {identifier}")


@repo_app.command("remove-news")
def remove_news_cmd(
    ctx: typer.Context,
    identifier: str = typer.Argument(...),
) -> None:
    """Remove a news item."""
    with open_service(ctx) as service:
        service.apply_manifest_op(
            RemoveNews(identifier=identifier), token=operator_token(ctx)
        )
    console.print(f"[green]Removed news[/green] {identifier}")


@repo_app.command("store")
def store_cmd(
    ctx: typer.Context,
    name: str = typer.Option(None),
    identifier: str = typer.Option(None),
    subtitle: str = typer.Option(None),
    description: str = typer.Option(None),
    icon_url: str = typer.Option(None),
    header_url: str = typer.Option(None),
    website: str = typer.Option(None),
    tint_color: str = typer.Option(None),
    featured: list[str] = typer.Option(None, help="Featured bundle id (repeatable)."),
) -> None:
    """Edit the store-level metadata."""
    op = UpdateStore(
        name=name,
        identifier=identifier,
        subtitle=subtitle,
        description=description,
        icon_url=icon_url,
        header_url=header_url,
        website=website,
        tint_color=tint_color,
        featured_apps=featured or None,
    )
    with open_service(ctx) as service:
        manifest = service.apply_manifest_op(op, token=operator_token(ctx))
    console.print(f"[green]Store updated:[/green] {manifest.name}")
