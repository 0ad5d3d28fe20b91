"""Adversarial tests for racing mutations of one artifact.

A metadata edit racing a sign must not lose either change, and a delete
during a sign must not resurrect the artifact.
"""

from __future__ import annotations

import threading
import time

import pytest

from ipaforge.core.distribution import DistributionService
from ipaforge.core.errors import NotFoundError
from ipaforge.models.artifacts import ArtifactPatch
from ipaforge.models.signing import SignState


@pytest.fixture
def certificate(service: DistributionService):
    return service.add_certificate(b"p12", b"profile", "Dev")


class TestEditDuringSign:
    def test_edit_waits_for_sign_and_both_apply(
        self, service: DistributionService, certificate, resigner, make_metadata
    ):
        artifact = service.upload(b"ipa", make_metadata()).artifact
        resigner.block()
        job = service.request_sign(artifact.artifact_id, certificate.id)
        assert resigner.started.wait(timeout=2)

        edit_done = threading.Event()

        def edit() -> None:
            service.edit(artifact.artifact_id, ArtifactPatch(changelog="Edited"))
            edit_done.set()

        editor = threading.Thread(target=edit)
        editor.start()
        assert not edit_done.wait(timeout=0.2)

        resigner.release.set()
        assert service.signing.wait(job.job_id, timeout=5).state == SignState.SIGNED
        editor.join(timeout=5)
        assert edit_done.is_set()

        final = service.registry.get(artifact.artifact_id)
        assert final.changelog == "Edited"
        assert final.is_signed
        assert service.registry.read_binary(artifact.artifact_id) == b"SIGNED:ipa"


class TestDeleteDuringSign:
    def test_delete_after_queued_sign_fails_job(
        self, service: DistributionService, certificate, resigner, make_metadata
    ):
        artifact = service.upload(b"ipa", make_metadata()).artifact
        resigner.block()
        # Both workers busy on other artifacts, so the last request waits.
        first = service.request_sign(
            service.upload(b"one", make_metadata(bundle_id="com.one")).artifact.artifact_id,
            certificate.id,
        )
        second = service.request_sign(
            service.upload(b"two", make_metadata(bundle_id="com.two")).artifact.artifact_id,
            certificate.id,
        )
        queued = service.request_sign(artifact.artifact_id, certificate.id)
        assert resigner.started.wait(timeout=2)
        assert service.signing.get_job(queued.job_id).state == SignState.REQUESTED

        service.delete(artifact.artifact_id)
        resigner.release.set()

        for job_id in (first.job_id, second.job_id):
            service.signing.wait(job_id, timeout=5)
        job = service.signing.wait(queued.job_id, timeout=5)
        assert job.state == SignState.FAILED
        assert "NotFoundError" in job.error
        with pytest.raises(NotFoundError):
            service.registry.get(artifact.artifact_id)
        assert not service.store.exists(artifact.storage_key)


class TestResignBacklog:
    def test_backlog_on_one_artifact_does_not_starve_others(
        self, service: DistributionService, certificate, resigner, make_metadata
    ):
        busy = service.upload(b"ipa", make_metadata()).artifact
        other = service.upload(b"other", make_metadata(bundle_id="com.other")).artifact
        resigner.block()
        backlog = [service.request_sign(busy.artifact_id, certificate.id) for _ in range(3)]
        assert resigner.started.wait(timeout=2)

        job = service.request_sign(other.artifact_id, certificate.id)
        deadline = time.monotonic() + 2
        while len(resigner.calls) < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert [c["binary"] for c in resigner.calls] == [busy.storage_key, other.storage_key]
        assert [service.signing.get_job(j.job_id).state for j in backlog[1:]] == [
            SignState.REQUESTED,
            SignState.REQUESTED,
        ]

        resigner.release.set()
        assert service.signing.wait(job.job_id, timeout=5).state == SignState.SIGNED
        for queued in backlog:
            assert service.signing.wait(queued.job_id, timeout=5).state == SignState.SIGNED
        assert service.registry.read_binary(busy.artifact_id) == b"SIGNED:SIGNED:SIGNED:ipa"
