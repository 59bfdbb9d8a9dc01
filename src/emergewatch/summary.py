"""Status line text for the active job table."""

from collections import Counter
from dataclasses import dataclass

from emergewatch.models import ActiveJobTable, iter_jobs

PHASE_ICONS = {
    "unpack": "phase_unpack",
    "prepare": "phase_prepare",
    "configure": "phase_configure",
    "compile": "phase_compile",
    "install": "phase_install",
}


@dataclass(slots=True, frozen=True)
class JobSummary:
    """Two-line description of what is being built."""

    details: str
    state: str | None = None
    start_time: int | None = None  # Earliest job start, seconds since the epoch
    phase_icon: str | None = None
    job_count: int = 0


def summarize(table: ActiveJobTable) -> JobSummary:
    """
    Summarize all jobs of all invocations.

    A single job is shown with its full atom and phase, several jobs as a
    count plus how many are in each phase.
    """
    jobs = list(iter_jobs(table))

    if not jobs:
        return JobSummary(details="No Jobs Running")

    start_time = min(job.create_time for job in jobs)

    if len(jobs) == 1:
        job = jobs[0]
        return JobSummary(
            details=job.atom,
            state=f"Phase: {job.phase}",
            start_time=start_time,
            phase_icon=PHASE_ICONS.get(job.phase),
            job_count=1,
        )

    phases = Counter(job.phase for job in jobs)
    state = ", ".join(f"{phase} ({count})" for phase, count in phases.items())
    return JobSummary(
        details=f"{len(jobs)} Jobs Running",
        state=f"Phases: {state}",
        start_time=start_time,
        job_count=len(jobs),
    )
