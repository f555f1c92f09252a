import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pagehost.core.database import get_db
from pagehost.core.dependencies import get_broker, get_supervisor
from pagehost.core.errors import NotFoundError
from pagehost.schemas.deployment import CancelResponse, DeploymentRead, DeploymentSummary
from pagehost.models.deployment import TERMINAL_RUN_STATUSES
from pagehost.services import domain_service
from pagehost.services.deployment_service import (
    cancel_deployment,
    list_deployments,
    require_deployment,
)
from pagehost.workers.log_channel import RunLogBroker, Subscription
from pagehost.workers.supervisor import TaskSupervisor

router = APIRouter(tags=["deployments"])


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _log_payload(seq: int, timestamp, level: str, message: str) -> dict:
    return {
        "output": message,
        "seq": seq,
        "level": level,
        "timestamp": timestamp.isoformat(),
    }


@router.get("/deployments/{run_id}", response_model=DeploymentRead)
async def get_deployment_endpoint(run_id: str, db: AsyncSession = Depends(get_db)):
    return await require_deployment(db, run_id)


@router.get("/deployments/{run_id}/stream")
async def stream_deployment_endpoint(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    supervisor: TaskSupervisor = Depends(get_supervisor),
    broker: RunLogBroker = Depends(get_broker),
):
    """Server-sent events: the stored log first, then live lines until the run ends."""
    # Subscribe before reading the snapshot so no line falls between the two
    subscription = broker.subscribe(run_id)
    try:
        run = await require_deployment(db, run_id)
    except NotFoundError:
        subscription.close()
        raise

    snapshot = [(e.seq, e.timestamp, e.level, e.message) for e in run.logs]
    snapshot_status = run.status
    live = not run.is_terminal and (supervisor.is_running(run_id) or broker.is_closed(run_id))

    async def event_stream(sub: Subscription) -> AsyncIterator[str]:
        last_seq = 0
        try:
            for seq, timestamp, level, message in snapshot:
                last_seq = seq
                yield _sse(_log_payload(seq, timestamp, level, message))

            final_status = snapshot_status
            if live:
                async for event in sub:
                    if event.seq <= last_seq:
                        continue
                    last_seq = event.seq
                    yield _sse(_log_payload(event.seq, event.timestamp, event.level, event.message))
                final_status = sub.final_status or final_status
            if final_status not in TERMINAL_RUN_STATUSES:
                # No worker in this process holds the run, so no further lines will come
                yield _sse(
                    {
                        "output": f"Deployment run is {final_status} but no worker is attached to it",
                        "status": "orphaned",
                        "run_status": final_status,
                        "complete": True,
                    }
                )
                return
            yield _sse(
                {
                    "output": f"Deployment finished with status: {final_status}",
                    "status": final_status,
                    "complete": True,
                }
            )
        finally:
            sub.close()

    return StreamingResponse(
        event_stream(subscription),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/deployments/{run_id}/cancel",
    response_model=CancelResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_deployment_endpoint(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    supervisor: TaskSupervisor = Depends(get_supervisor),
    broker: RunLogBroker = Depends(get_broker),
):
    run, signalled = await cancel_deployment(db, run_id, supervisor=supervisor, broker=broker)
    return CancelResponse(run_id=run.run_id, status=run.status, cancel_requested=signalled)


@router.get("/domains/{domain_id}/deployments", response_model=list[DeploymentSummary])
async def domain_deployments_endpoint(domain_id: int, db: AsyncSession = Depends(get_db)):
    await domain_service.require_domain(db, domain_id)
    return await list_deployments(db, domain_id)
