"""Signing Pipeline: re-signs an artifact's binary on a worker pool.

State machine per sign request::

    requested -> in_progress -> signed
                             -> failed

``submit()`` validates preconditions on the caller's thread and returns
immediately; the external signer runs on a ``ThreadPoolExecutor`` so a slow
sign never holds up registry reads or writes of other artifacts. Jobs for
one artifact run one at a time in request order: later ones wait in a
per-artifact queue instead of occupying a worker, so re-signs piling up on
one artifact never starve the others. While a job runs it holds that
artifact's lock, so a metadata edit of the same artifact waits for the sign
to finish.

On success the new bytes replace the old ones atomically under the same
``artifact_id`` and ``signed_at`` is set. On any failure the artifact is
left exactly as it was.
"""

from __future__ import annotations

import logging
import tempfile
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ipaforge.core.certificate_store import CertificateStore
from ipaforge.core.errors import NotFoundError, SigningError, ValidationError
from ipaforge.core.registry import ArtifactRegistry
from ipaforge.core.resigner import Resigner
from ipaforge.models.artifacts import Artifact
from ipaforge.models.signing import VALID_TRANSITIONS, SignJob, SignState

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested sign-state transition is not valid."""


class SigningPipeline:
    """Runs sign requests off the request path.

    Parameters
    ----------
    registry:
        Artifact registry whose binaries are re-signed in place.
    certificates:
        Source of signing identities.
    resigner:
        The external re-signing capability.
    max_workers:
        Concurrent sign jobs.
    timeout:
        Upper bound in seconds on one signer invocation.
    """

    def __init__(
        self,
        registry: ArtifactRegistry,
        certificates: CertificateStore,
        resigner: Resigner,
        *,
        max_workers: int = 2,
        timeout: float = 120.0,
    ) -> None:
        self._registry = registry
        self._certificates = certificates
        self._resigner = resigner
        self._timeout = timeout
        self._workers = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ipaforge-sign"
        )
        # Signer calls run here so the worker can stop waiting on a hung signer.
        self._signer_calls = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ipaforge-signer"
        )
        self._lock = threading.Lock()
        self._jobs: dict[str, SignJob] = {}
        self._done: dict[str, threading.Event] = {}
        # Per artifact: the running job first, then waiting ones in order.
        self._queues: dict[int, deque[str]] = {}

    # ------------------------------------------------------------------
    # Submission and observation
    # ------------------------------------------------------------------

    def submit(self, artifact_id: int, certificate_id: int) -> SignJob:
        """Queue a sign of *artifact_id* with *certificate_id*.

        Raises ``NotFoundError`` for an unknown artifact or certificate and
        ``ValidationError`` for an inactive certificate. Re-signing an
        already signed artifact is allowed.
        """
        self._registry.get(artifact_id)
        certificate = self._certificates.get(certificate_id)
        if not certificate.is_active:
            raise ValidationError(
                f"Certificate {certificate_id} ({certificate.name}) is not active"
            )

        job = SignJob(artifact_id=artifact_id, certificate_id=certificate_id)
        with self._lock:
            self._jobs[job.job_id] = job
            self._done[job.job_id] = threading.Event()
            queue = self._queues.setdefault(artifact_id, deque())
            queue.append(job.job_id)
            runs_now = len(queue) == 1
        if runs_now:
            self._dispatch(job.job_id)
        logger.info(
            "Sign job %s requested: artifact %d with certificate %d",
            job.job_id, artifact_id, certificate_id,
        )
        return job

    def get_job(self, job_id: str) -> SignJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Sign job not found: {job_id}")
        return job

    def jobs(self, artifact_id: int | None = None) -> list[SignJob]:
        with self._lock:
            snapshot = list(self._jobs.values())
        if artifact_id is not None:
            snapshot = [j for j in snapshot if j.artifact_id == artifact_id]
        return sorted(snapshot, key=lambda j: j.requested_at)

    def wait(self, job_id: str, timeout: float | None = None) -> SignJob:
        """Block until the job finishes or *timeout* elapses.

        Returns the latest snapshot, which is still ``in_progress`` if the
        wait timed out.
        """
        self.get_job(job_id)
        with self._lock:
            done = self._done[job_id]
        done.wait(timeout=timeout)
        return self.get_job(job_id)

    def sign(self, artifact_id: int, certificate_id: int) -> Artifact:
        """Submit and wait. Raises ``SigningError`` if the job failed."""
        job = self.wait(self.submit(artifact_id, certificate_id).job_id)
        if job.state != SignState.SIGNED:
            raise SigningError(job.error or "Signing failed")
        return self._registry.get(artifact_id)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the pool. With *wait*, every queued job finishes first."""
        if wait:
            with self._lock:
                pending = list(self._done.values())
            for done in pending:
                done.wait()
        self._workers.shutdown(wait=wait)
        self._signer_calls.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, job_id: str, target: SignState, **updates: Any) -> SignJob:
        with self._lock:
            current = self._jobs[job_id]
            if target not in VALID_TRANSITIONS[current.state]:
                raise InvalidTransitionError(
                    f"Cannot transition {job_id} from {current.state.value} "
                    f"to {target.value}"
                )
            job = current.model_copy(update={"state": target, **updates})
            self._jobs[job_id] = job
        logger.debug("Sign job %s: %s -> %s", job_id, current.state.value, target.value)
        return job

    def _dispatch(self, job_id: str) -> None:
        try:
            self._workers.submit(self._run, job_id)
        except RuntimeError:
            # Pool already shut down.
            self._transition(
                job_id,
                SignState.FAILED,
                error="Signing pipeline is shut down",
                finished_at=datetime.now(timezone.utc),
            )
            self._complete(job_id)

    def _complete(self, job_id: str) -> None:
        """Release waiters and hand the artifact to its next queued job."""
        with self._lock:
            artifact_id = self._jobs[job_id].artifact_id
            self._done[job_id].set()
            queue = self._queues[artifact_id]
            queue.popleft()
            next_job_id = queue[0] if queue else None
            if next_job_id is None:
                del self._queues[artifact_id]
        if next_job_id is not None:
            self._dispatch(next_job_id)

    def _run(self, job_id: str) -> None:
        try:
            self._execute(job_id)
        finally:
            self._complete(job_id)

    def _execute(self, job_id: str) -> None:
        job = self._transition(
            job_id, SignState.IN_PROGRESS, started_at=datetime.now(timezone.utc)
        )
        try:
            self._sign_artifact(job)
        except Exception as exc:
            reason = str(exc) if isinstance(exc, SigningError) else f"{type(exc).__name__}: {exc}"
            logger.warning("Sign job %s failed: %s", job_id, reason)
            self._transition(
                job_id,
                SignState.FAILED,
                error=reason,
                finished_at=datetime.now(timezone.utc),
            )
            return
        self._transition(job_id, SignState.SIGNED, finished_at=datetime.now(timezone.utc))
        logger.info("Sign job %s finished: artifact %d signed", job_id, job.artifact_id)

    def _sign_artifact(self, job: SignJob) -> None:
        with self._registry.locked(job.artifact_id):
            artifact = self._registry.get(job.artifact_id)
            certificate = self._certificates.get(job.certificate_id)
            if not certificate.is_active:
                raise SigningError(f"Certificate {certificate.id} was deactivated")
            data = self._registry.read_binary(artifact.artifact_id)

            with tempfile.TemporaryDirectory(prefix="ipaforge-sign-") as tmp:
                source = Path(tmp) / artifact.storage_key
                source.write_bytes(data)
                signed = self._invoke_signer(
                    source,
                    certificate.key_bundle_path,
                    certificate.profile_path,
                    certificate.password,
                )

            if not signed:
                raise SigningError("Signer returned an empty binary")
            self._registry.replace_binary(
                artifact.artifact_id, signed, signed_at=datetime.now(timezone.utc)
            )

    def _invoke_signer(
        self,
        source: Path,
        key_bundle_path: Path,
        profile_path: Path,
        password: str | None,
    ) -> bytes:
        call = self._signer_calls.submit(
            self._resigner.resign,
            source,
            key_bundle_path,
            profile_path,
            password,
            timeout=self._timeout,
        )
        try:
            return call.result(timeout=self._timeout)
        except FutureTimeoutError as exc:
            call.cancel()
            raise SigningError(f"Signer timed out after {self._timeout}s") from exc
