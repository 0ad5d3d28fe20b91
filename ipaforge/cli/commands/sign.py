"""``ipaforge sign ARTIFACT_ID CERT_ID``: re-sign an IPA with a certificate."""

from __future__ import annotations

import typer

from ipaforge.cli.commands._shared import console, open_service, operator_token
from ipaforge.models.signing import SignState


def sign_cmd(
    ctx: typer.Context,
    artifact_id: int = typer.Argument(..., help="Artifact ID to sign."),
    certificate_id: int = typer.Argument(..., help="Active certificate ID."),
    timeout: float = typer.Option(
        None,
        help=(
            "Report progress after this many seconds. The command still waits "
            "for the job, which runs inside this process."
        ),
    ),
) -> None:
    """Re-sign an IPA in place. Its ID and links are preserved."""
    with open_service(ctx) as service:
        job = service.request_sign(artifact_id, certificate_id, token=operator_token(ctx))
        console.print(f"Sign job [cyan]{job.job_id}[/cyan] requested...")
        with console.status("Signing..."):
            job = service.signing.wait(job.job_id, timeout=timeout)
        if not job.is_finished:
            console.print(
                f"[yellow]Still {job.state.value} after {timeout}s, "
                f"waiting for the signer to finish[/yellow]"
            )
            with console.status("Signing..."):
                job = service.signing.wait(job.job_id)

    if job.state == SignState.SIGNED:
        console.print(f"[bold green]Signed[/bold green] artifact {artifact_id}")
        return
    console.print(f"[bold red]Signing failed:[/bold red] {job.error}")
    raise typer.Exit(code=1)
