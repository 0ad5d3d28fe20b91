"""Tests for the zsign backend: command construction and failure mapping."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from ipaforge.core.errors import SigningError
from ipaforge.core.resigner import Resigner, ZsignResigner, run_process


class TestBuildCommand:
    def test_with_password(self):
        cmd = ZsignResigner("zsign").build_command(
            Path("in.ipa"), Path("id.p12"), Path("p.mobileprovision"), "pw", Path("out.ipa")
        )
        assert cmd == [
            "zsign", "-k", "id.p12", "-m", "p.mobileprovision",
            "-p", "pw", "-o", "out.ipa", "in.ipa",
        ]

    def test_without_password_and_extra_args(self):
        cmd = ZsignResigner("/opt/zsign", extra_args=["-z", "9"]).build_command(
            Path("in.ipa"), Path("id.p12"), Path("p.mobileprovision"), None, Path("out.ipa")
        )
        assert "-p" not in cmd
        assert cmd[0] == "/opt/zsign"
        assert cmd[-3:] == ["-z", "9", "in.ipa"]

    def test_satisfies_protocol(self):
        assert isinstance(ZsignResigner(), Resigner)


class TestRunProcess:
    def test_nonzero_exit_maps_to_signing_error(self):
        error = subprocess.CalledProcessError(1, ["zsign"], output=b"", stderr=b"bad password\n")
        with patch("ipaforge.core.resigner.subprocess.run", side_effect=error):
            with pytest.raises(SigningError, match="bad password"):
                run_process("zsign", "-k", "x")

    def test_timeout_maps_to_signing_error(self):
        error = subprocess.TimeoutExpired(["zsign"], 3)
        with patch("ipaforge.core.resigner.subprocess.run", side_effect=error):
            with pytest.raises(SigningError, match="timed out"):
                run_process("zsign", timeout=3)

    def test_missing_executable(self):
        with pytest.raises(SigningError, match="Cannot run"):
            run_process("ipaforge-no-such-signer-binary")


class TestResign:
    def test_reads_output_file(self, tmp_path: Path):
        source = tmp_path / "in.ipa"
        source.write_bytes(b"unsigned")

        def fake_run(*cmd, timeout=None, cwd=None):
            out = Path(cmd[cmd.index("-o") + 1])
            out.write_bytes(b"signed")

        with patch("ipaforge.core.resigner.run_process", side_effect=fake_run):
            result = ZsignResigner().resign(source, tmp_path / "k.p12", tmp_path / "p", None)
        assert result == b"signed"

    def test_no_output_is_signing_error(self, tmp_path: Path):
        with patch("ipaforge.core.resigner.run_process"):
            with pytest.raises(SigningError, match="no output"):
                ZsignResigner().resign(tmp_path / "in.ipa", tmp_path / "k", tmp_path / "p", None)
