# app/entrypoints/api/routers/events.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_registry, require_api_key
from ....schemas import CreationEventIn, EventAccepted
from ....service_layer.pipeline import PipelineClosedError
from ....service_layer.registry import PipelineRegistry, RegistryNotRunningError, UnknownSourceError

router = APIRouter(tags=["events"])


@router.post(
    "/sources/{source_id}/events",
    response_model=EventAccepted,
    status_code=202,
    dependencies=[Depends(require_api_key)],
)
async def receive_creation_event(
    source_id: str,
    body: CreationEventIn,
    registry: PipelineRegistry = Depends(get_registry),
) -> EventAccepted:
    """
    Push entrypoint for "record created" events.

    202 means the delivery is queued on the source's pipeline. Write
    failures after that point land in the dead-letter channel, never here.
    """
    try:
        await registry.dispatch(source_id, {"id": body.id, "data": body.data})
    except UnknownSourceError:
        raise HTTPException(status_code=404, detail=f"Unknown source: {source_id}")
    except (RegistryNotRunningError, PipelineClosedError) as e:
        raise HTTPException(status_code=503, detail=str(e))

    return EventAccepted(
        source_id=source_id,
        original_id=None if body.id is None else str(body.id),
        queue_depth=registry.get(source_id).queue_depth,
    )
