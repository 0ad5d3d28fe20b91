"""Main Typer application: imports and registers all CLI commands.

Entry point: ``ipaforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from pathlib import Path

import typer

from ipaforge.cli.commands._shared import config_for
from ipaforge.cli.commands.artifacts import (
    delete_cmd,
    edit_cmd,
    links_cmd,
    list_cmd,
    stats_cmd,
    upload_cmd,
)
from ipaforge.cli.commands.certs import certs_app
from ipaforge.cli.commands.repo import repo_app
from ipaforge.cli.commands.sign import sign_cmd
from ipaforge.logging_setup import configure_logging

app = typer.Typer(
    name="ipaforge",
    help="ipaforge: IPA registry, re-signing and alternative-store repository.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    data_dir: Path = typer.Option(
        None,
        "--data-dir",
        "-d",
        help="Root all storage under this directory (overrides IPAFORGE_* paths).",
    ),
    log_level: str = typer.Option(None, help="Override IPAFORGE_LOG_LEVEL."),
) -> None:
    config = config_for(data_dir)
    configure_logging(log_level or config.log_level)
    ctx.ensure_object(dict)["config"] = config


# Register subcommands
app.command(name="upload", help="Upload an IPA and print its links.")(upload_cmd)
app.command(name="list", help="List uploaded IPAs.")(list_cmd)
app.command(name="edit", help="Edit an IPA's metadata or binary.")(edit_cmd)
app.command(name="delete", help="Delete an IPA.")(delete_cmd)
app.command(name="links", help="Show an IPA's published links.")(links_cmd)
app.command(name="stats", help="Show an IPA's views and downloads.")(stats_cmd)
app.command(name="sign", help="Re-sign an IPA with a certificate.")(sign_cmd)
app.add_typer(certs_app, name="certs")
app.add_typer(repo_app, name="repo")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
