"""External re-signing capability.

The signing pipeline talks to the signer only through the ``Resigner``
protocol. The default backend shells out to ``zsign``, which rewrites the
app bundle's code signature with a .p12 identity and embeds the
provisioning profile.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from ipaforge.core.errors import SigningError

logger = logging.getLogger(__name__)


@runtime_checkable
class Resigner(Protocol):
    """Protocol for re-signing backends.

    Implementations return the bytes of the re-signed IPA or raise
    ``SigningError`` with the underlying reason.
    """

    def resign(
        self,
        binary_path: Path,
        key_bundle_path: Path,
        profile_path: Path,
        password: str | None,
        *,
        timeout: float | None = None,
    ) -> bytes:
        ...


def _decode_clean(data: bytes | None) -> str:
    return "" if not data else data.decode("utf-8", errors="replace").strip()


def run_process(
    *cmd: str,
    timeout: float | None = None,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess[bytes]:
    """Run a command, converting failures and timeouts into ``SigningError``."""
    try:
        return subprocess.run(
            cmd, capture_output=True, check=True, timeout=timeout, cwd=cwd
        )
    except subprocess.TimeoutExpired as exc:
        raise SigningError(f"{cmd[0]} timed out after {timeout}s") from exc
    except subprocess.CalledProcessError as exc:
        reason = _decode_clean(exc.stderr) or _decode_clean(exc.stdout) or f"exit {exc.returncode}"
        raise SigningError(f"{cmd[0]} failed: {reason}") from exc
    except OSError as exc:
        raise SigningError(f"Cannot run {cmd[0]}: {exc}") from exc


class ZsignResigner:
    """Re-sign with the ``zsign`` command line tool.

    Parameters
    ----------
    command:
        Executable name or path, e.g. ``"zsign"`` or ``"/opt/zsign/bin/zsign"``.
    extra_args:
        Additional flags passed before the input path (e.g. ``["-z", "9"]``).
    """

    def __init__(self, command: str = "zsign", extra_args: Sequence[str] = ()) -> None:
        self._command = command
        self._extra_args = list(extra_args)

    def is_available(self) -> bool:
        return shutil.which(self._command) is not None

    def build_command(
        self,
        binary_path: Path,
        key_bundle_path: Path,
        profile_path: Path,
        password: str | None,
        output_path: Path,
    ) -> list[str]:
        cmd = [self._command, "-k", str(key_bundle_path), "-m", str(profile_path)]
        if password:
            cmd += ["-p", password]
        cmd += ["-o", str(output_path), *self._extra_args, str(binary_path)]
        return cmd

    def resign(
        self,
        binary_path: Path,
        key_bundle_path: Path,
        profile_path: Path,
        password: str | None,
        *,
        timeout: float | None = None,
    ) -> bytes:
        with tempfile.TemporaryDirectory(prefix="ipaforge-zsign-") as tmp:
            output_path = Path(tmp) / "signed.ipa"
            cmd = self.build_command(
                binary_path, key_bundle_path, profile_path, password, output_path
            )
            logger.debug("Running %s on %s", self._command, binary_path.name)
            run_process(*cmd, timeout=timeout, cwd=Path(tmp))
            if not output_path.exists():
                raise SigningError(f"{self._command} produced no output file")
            return output_path.read_bytes()
