"""Job queue interface."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from saga_pipeline.jobs.models import JobState, QueueJob


class JobQueue(ABC):
    """Abstract interface for saga job distribution (local or Redis).

    Operations surface broker errors as QueueUnavailable instead of retrying;
    reconnect backoff belongs to the connection layer underneath.
    """

    @abstractmethod
    async def enqueue(self, saga_id: str, source_id: str, delay_seconds: float = 0) -> str:
        """Add a job for a saga. Returns job_id."""
        ...

    @abstractmethod
    async def claim_next(self) -> Optional[QueueJob]:
        """Move the oldest waiting job to active and return it, or None."""
        ...

    @abstractmethod
    async def mark_completed(self, job_id: str) -> bool:
        """Complete an active job. Returns False if it was already terminal."""
        ...

    @abstractmethod
    async def mark_failed(self, job_id: str, reason: str) -> bool:
        """Fail a job. Returns False if it was already terminal."""
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[QueueJob]:
        ...

    @abstractmethod
    async def list_by_state(self, state: JobState) -> List[QueueJob]:
        """Jobs currently in ``state``, oldest first."""
        ...

    @abstractmethod
    async def counts(self) -> Dict[JobState, int]:
        ...

    @abstractmethod
    async def remove(self, job_id: str) -> QueueJob:
        """Delete a job in any state; active jobs are failed first."""
        ...

    async def close(self) -> None:
        """Release broker resources."""
        return None

    async def ping(self) -> bool:
        return True

    async def list_all(self) -> List[QueueJob]:
        jobs: List[QueueJob] = []
        for state in JobState:
            jobs.extend(await self.list_by_state(state))
        return jobs
