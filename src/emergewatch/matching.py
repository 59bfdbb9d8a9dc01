"""
Command-line classifiers for Portage build processes.

A running ebuild phase looks like this in the process tree::

    /usr/bin/python3.12 /usr/lib/python-exec/python3.12/emerge -av python
    `- [dev-lang/python-3.11.9] sandbox /usr/lib/portage/python3.12/ebuild.sh unpack
       `- /bin/bash /usr/lib/portage/python3.12/ebuild.sh unpack

Everything in here is pure string handling so it can be tested without a
process table.
"""

import re
from collections.abc import Sequence
from dataclasses import dataclass

TOOL_NAME = "emerge"
PHASE_RUNNER = "ebuild.sh"
SANDBOX_MARKER = "sandbox"

_PHASE_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_DIGITS = tuple("0123456789")


@dataclass(slots=True, frozen=True)
class SandboxMatch:
    """The interesting parts of a sandbox command line."""

    tag: str  # Bracket contents, e.g. "sys-kernel/cachyos-kernel-6.15.1"
    phase: str


def is_phase_runner(cmdline: Sequence[str], runner: str = PHASE_RUNNER) -> bool:
    """Check for a ``bash .../ebuild.sh <phase>`` worker."""
    return len(cmdline) == 3 and cmdline[1].endswith(runner)


def is_build_tool(cmdline: Sequence[str], tool: str = TOOL_NAME) -> bool:
    """
    Check whether a command line is a build tool invocation.

    The tool runs through an interpreter, so its path is the second argument.
    Matching on ``/<tool>`` keeps paths that merely contain the name out.
    """
    return len(cmdline) >= 2 and cmdline[1].endswith(f"/{tool}")


def match_sandbox(
    command_line: str,
    runner: str = PHASE_RUNNER,
    marker: str = SANDBOX_MARKER,
) -> SandboxMatch | None:
    """
    Match the job-defining sandbox process.

    The sandbox merges argument boundaries, so the joined command line is
    split on whitespace instead of trusting the argument vector.

    Args:
        command_line: Full command line as a single string.
        runner: Script name the third token has to end with.
        marker: Literal second token.

    Returns:
        The bracketed tag and the phase, or None if the shape does not fit.
    """
    tokens = command_line.split()
    if len(tokens) != 4:
        return None

    tag, sandbox, script, phase = tokens
    if len(tag) < 2 or not (tag.startswith("[") and tag.endswith("]")):
        return None
    if sandbox != marker or not script.endswith(runner):
        return None
    if not _PHASE_RE.match(phase):
        return None

    return SandboxMatch(tag=tag[1:-1], phase=phase)


def split_package_version(package_version: str) -> tuple[str, str]:
    """
    Split ``name-version`` at the first digit-leading component.

    Components before the first one starting with a digit form the package
    name, that component and everything after it form the version::

        cachyos-kernel-6.15.1  -> ("cachyos-kernel", "6.15.1")
        gentoo-sources-6.6.30-r1 -> ("gentoo-sources", "6.6.30-r1")

    Package names with a digit-leading component are misread: ``foo-3d-1.0``
    gives ``("foo", "3d-1.0")``. Portage names rarely look like that, and
    there is no way to tell them apart without the package database.
    """
    package: list[str] = []
    version: list[str] = []
    for part in package_version.split("-"):
        if version or part.startswith(_DIGITS):
            version.append(part)
        else:
            package.append(part)
    return "-".join(package), "-".join(version)


def parse_atom(tag: str) -> tuple[str, str, str] | None:
    """
    Parse ``category/package-version`` into its three parts.

    Returns:
        (category, package, version), or None when there is no ``/``.
    """
    category, sep, package_version = tag.partition("/")
    if not sep or not category or not package_version:
        return None
    package, version = split_package_version(package_version)
    return category, package, version
