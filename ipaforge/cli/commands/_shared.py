"""Helpers shared by the CLI commands: service construction and error display."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer
from rich.console import Console

from ipaforge.config import IpaForgeConfig
from ipaforge.core.distribution import DistributionService
from ipaforge.core.errors import IpaForgeError

console = Console()


def config_for(data_dir: Path | None) -> IpaForgeConfig:
    """Environment config, with every storage path rooted at *data_dir* if given."""
    if data_dir is None:
        return IpaForgeConfig()
    return IpaForgeConfig(
        data_dir=data_dir,
        registry_db_path=data_dir / "registry.db",
        binary_store_path=data_dir / "uploads" / "ipa",
        certificate_store_path=data_dir / "certificates",
        manifest_path=data_dir / "source.json",
    )


def get_config(ctx: typer.Context) -> IpaForgeConfig:
    obj = ctx.ensure_object(dict)
    if "config" not in obj:
        obj["config"] = config_for(None)
    return obj["config"]


@contextmanager
def open_service(ctx: typer.Context) -> Iterator[DistributionService]:
    """A service bound to the CLI's config, closed on exit.

    Expected ipaforge errors are printed and turned into exit code 1.
    """
    try:
        with DistributionService(get_config(ctx)) as service:
            yield service
    except IpaForgeError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc


def operator_token(ctx: typer.Context) -> str:
    return get_config(ctx).api_token


def human_size(size: int) -> str:
    return f"{size / 1024 / 1024:.2f} MB"
