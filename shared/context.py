"""What a running job sees: its identity, parameters, token and progress channel."""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from shared.cancellation import CancellationToken


@dataclass
class ProgressUpdate:
    """One progress report emitted by a pipeline."""
    stage: str
    percent: int
    message: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class JobContext:
    """Handed to a pipeline by the orchestrator.

    `report()` only enqueues; the orchestrator drains the queue in order,
    persists progress and relays it to listeners, so a slow client never
    slows the pipeline down.
    """

    def __init__(
        self,
        job_id: str,
        tenant_id: str,
        params: Dict[str, Any],
        token: CancellationToken,
        queue: "asyncio.Queue[Optional[ProgressUpdate]]"
    ):
        self.job_id = job_id
        self.tenant_id = tenant_id
        self.params = params
        self.token = token
        self._queue = queue
        self._percent = 0

    @property
    def percent(self) -> int:
        return self._percent

    async def report(self, stage: str, percent: float, message: Optional[str] = None, **data: Any):
        # Progress never goes backwards within a job
        self._percent = max(self._percent, min(100, int(percent)))
        await self._queue.put(ProgressUpdate(stage, self._percent, message, data))
