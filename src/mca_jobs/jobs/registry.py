"""In-process registry of live job runs."""

from datetime import UTC, datetime

from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.errors import RunCapacityError

logger = get_logger(__name__)


class RunControl:
    """Signals shared between the controller and one live run.

    Both flags are one-way latches: once set they stay set for the lifetime
    of the run.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.registered_at = datetime.now(UTC)
        self._cancelled = False
        self._paused = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def paused(self) -> bool:
        return self._paused

    def request_cancel(self) -> None:
        self._cancelled = True

    def request_pause(self) -> None:
        self._paused = True

    def __repr__(self) -> str:
        return (
            f"RunControl(job_id={self.job_id!r}, cancelled={self._cancelled}, "
            f"paused={self._paused})"
        )


class RunRegistry:
    """Bounded map of job id to the RunControl of its live run.

    A job has a live run in this process iff its id is present here.
    """

    def __init__(self, capacity: int = 64):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._runs: dict[str, RunControl] = {}

    def register(self, job_id: str) -> RunControl:
        """Create and store a control for a starting run.

        Raises:
            RunCapacityError: If every slot is taken.
            RuntimeError: If the job already has a live run.
        """
        if job_id in self._runs:
            raise RuntimeError(f"Job {job_id} already has a live run")
        if self.is_full:
            raise RunCapacityError(self.capacity)
        control = RunControl(job_id)
        self._runs[job_id] = control
        logger.debug(f"Registered run for job {job_id} ({len(self._runs)}/{self.capacity})")
        return control

    def release(self, control: RunControl) -> bool:
        """Remove a control, but only if it is still the registered one."""
        current = self._runs.get(control.job_id)
        if current is not control:
            return False
        del self._runs[control.job_id]
        logger.debug(f"Released run for job {control.job_id}")
        return True

    def get(self, job_id: str) -> RunControl | None:
        return self._runs.get(job_id)

    def is_live(self, job_id: str) -> bool:
        return job_id in self._runs

    def live_since(self, job_id: str) -> datetime | None:
        control = self._runs.get(job_id)
        return control.registered_at if control is not None else None

    def signal_cancel(self, job_id: str) -> bool:
        control = self._runs.get(job_id)
        if control is None:
            return False
        control.request_cancel()
        return True

    def signal_pause(self, job_id: str) -> bool:
        control = self._runs.get(job_id)
        if control is None:
            return False
        control.request_pause()
        return True

    def job_ids(self) -> list[str]:
        return list(self._runs)

    @property
    def is_full(self) -> bool:
        return len(self._runs) >= self.capacity

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._runs
