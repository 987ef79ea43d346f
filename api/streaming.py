"""Server-Sent Events encoding of a job's progress stream."""
import asyncio
import json
from typing import Any, AsyncIterator, Dict

from fastapi.responses import StreamingResponse

from api.models.job import JobModel, JobStatusEnum
from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressEvent, Subscription
from shared.config import settings

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

KEEP_ALIVE = ": keep-alive\n\n"


def format_sse(event: str, data: Dict[str, Any]) -> str:
    """Encode one named event as an SSE frame."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def terminal_event_for(job: JobModel) -> ProgressEvent:
    """The terminal event matching a finished job record."""
    name = job.type.value.lower()
    if job.status == JobStatusEnum.COMPLETED:
        return ProgressEvent(job.id, "complete", {
            "message": f"{name.capitalize()} job completed!",
            "jobId": job.id,
            "result": job.result
        })
    if job.status == JobStatusEnum.CANCELLED:
        return ProgressEvent(job.id, "cancelled", {"message": f"{name.capitalize()} job was cancelled", "jobId": job.id})
    return ProgressEvent(job.id, "error", {"error": job.error_message or "Job failed", "jobId": job.id})


async def stream_job_events(
    subscription: Subscription,
    orchestrator: JobOrchestrator,
    heartbeat: float = None
) -> AsyncIterator[str]:
    """Yield SSE frames for one job until exactly one terminal event was sent.

    The subscription must be opened before the job is launched so no event
    is missed. If the job is already finished when we look, the terminal
    event is rebuilt from the job record.
    """
    heartbeat = heartbeat or settings.stream_heartbeat_interval
    with subscription:
        job = await orchestrator.get_job(subscription.job_id)
        if job is None:
            yield format_sse("error", {"error": f"Job {subscription.job_id} not found", "jobId": subscription.job_id})
            return

        while True:
            if job is not None and job.status.is_terminal and not subscription.pending():
                event = terminal_event_for(job)
                yield format_sse(event.event, event.data)
                return

            try:
                event = await subscription.get(timeout=heartbeat)
            except asyncio.TimeoutError:
                yield KEEP_ALIVE
                job = await orchestrator.get_job(subscription.job_id)
                continue

            job = None
            yield format_sse(event.event, event.data)
            if event.is_terminal:
                return


def sse_response(frames: AsyncIterator[str]) -> StreamingResponse:
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
