"""Portage version probe."""

import subprocess

from emergewatch.errors import VersionProbeError


def portage_version(executable: str = "ebuild", timeout: float = 10.0) -> str:
    """
    Get the first line printed by ``ebuild --version``, e.g. "Portage 3.0.68".

    Raises:
        VersionProbeError: The tool is missing, failed, or printed nothing.
    """
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise VersionProbeError(f"could not run {executable} --version: {exc}") from exc

    if result.returncode != 0:
        raise VersionProbeError(f"{executable} --version exited with {result.returncode}")

    lines = result.stdout.splitlines()
    if not lines or not lines[0].strip():
        raise VersionProbeError(f"{executable} --version printed nothing")
    return lines[0].strip()
