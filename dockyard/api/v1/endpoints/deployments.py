"""
API endpoints for project deployments.

Uses the repositories for reads, the DeploymentExecutor for the deploy
trigger and the LogBroadcaster for live output. Domain exceptions are mapped
to HTTP responses by the registered exception handlers.
"""
import asyncio
import json
import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketState

from dockyard.core.database import get_db
from dockyard.core.exceptions import DeploymentProjectMismatchError
from dockyard.models.deployment import Deployment
from dockyard.repositories.deployment_repository import DeploymentRepository
from dockyard.repositories.project_repository import ProjectRepository
from dockyard.schemas.deployment import (
    DeploymentCancelResponse,
    DeploymentHandle,
    DeploymentHistoryResponse,
    DeploymentLogsResponse,
    DeploymentResponse,
)
from dockyard.services.deployment.executor import DeploymentExecutor, deployment_executor
from dockyard.services.deployment.log_broadcaster import (
    LogBroadcaster,
    Subscription,
    log_broadcaster,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_executor() -> DeploymentExecutor:
    """Dependency returning the process-wide deployment executor."""
    return deployment_executor


def get_broadcaster() -> LogBroadcaster:
    """Dependency returning the process-wide log broadcaster."""
    return log_broadcaster


async def _get_project_deployment(
    db: AsyncSession,
    project_id: UUID,
    deployment_id: UUID,
) -> Deployment:
    """
    Load a deployment through the project it belongs to.

    Raises:
        ProjectNotFoundError: If project not found (404)
        DeploymentNotFoundError: If deployment not found (404)
        DeploymentProjectMismatchError: If it belongs to another project (403)
    """
    await ProjectRepository(db).get_project(project_id)
    deployment = await DeploymentRepository(db).get_by_id_or_raise(deployment_id)
    if deployment.project_id != project_id:
        raise DeploymentProjectMismatchError(str(deployment_id), str(project_id))
    return deployment


@router.post(
    "/{project_id}/deploy",
    response_model=DeploymentHandle,
    status_code=status.HTTP_202_ACCEPTED,
)
async def deploy_project(
    project_id: UUID,
    executor: DeploymentExecutor = Depends(get_executor),
) -> DeploymentHandle:
    """
    Start deploying the project's current file tree.

    Returns as soon as the deployment is recorded; progress is available
    from the live channel and the status endpoint.

    Raises:
        ProjectNotFoundError: If project not found (404)
        ProjectArchivedError: If project is archived (400)
        DeploymentInProgressError: If a deployment is already running (409)
    """
    return await executor.deploy(project_id)


@router.post("/{project_id}/deploy/cancel", response_model=DeploymentCancelResponse)
async def cancel_deployment(
    project_id: UUID,
    executor: DeploymentExecutor = Depends(get_executor),
) -> DeploymentCancelResponse:
    """
    Ask the in-flight deployment to stop before its next step.

    Raises:
        NoDeploymentInProgressError: If nothing is running (409)
    """
    deployment_id = executor.cancel(project_id)
    return DeploymentCancelResponse(deployment_id=deployment_id, project_id=project_id)


@router.get("/{project_id}/deploy/status/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment_status(
    project_id: UUID,
    deployment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DeploymentResponse:
    """Get the current state of one deployment."""
    deployment = await _get_project_deployment(db, project_id, deployment_id)
    return DeploymentResponse.model_validate(deployment)


@router.get("/{project_id}/deploy/logs/{deployment_id}", response_model=DeploymentLogsResponse)
async def get_deployment_logs(
    project_id: UUID,
    deployment_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DeploymentLogsResponse:
    """
    Get the persisted output of a deployment.

    Logs are written when the deployment finishes; use the live channel for
    output of a running deployment.
    """
    deployment = await _get_project_deployment(db, project_id, deployment_id)
    return DeploymentLogsResponse(
        deployment_id=deployment.id,
        status=deployment.status,
        logs=deployment.logs or "",
    )


@router.get("/{project_id}/deploy/history", response_model=DeploymentHistoryResponse)
async def get_deployment_history(
    project_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum number of deployments"),
    db: AsyncSession = Depends(get_db),
) -> DeploymentHistoryResponse:
    """List the project's deployments, newest first."""
    await ProjectRepository(db).get_project(project_id)
    deployments = await DeploymentRepository(db).list_for_project(project_id, limit=limit)
    return DeploymentHistoryResponse(
        project_id=project_id,
        results=len(deployments),
        deployments=[DeploymentResponse.model_validate(d) for d in deployments],
    )


# =============================================================================
# Live output
# =============================================================================

async def _watch_disconnect(websocket: WebSocket, subscription: Subscription) -> None:
    """Close the subscription once the client goes away; inbound frames are ignored."""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()


async def relay_events(websocket: WebSocket, subscription: Subscription) -> None:
    """Send every channel event to the client as JSON until the channel closes."""
    watcher = asyncio.create_task(_watch_disconnect(websocket, subscription))
    try:
        async for event in subscription:
            await websocket.send_json(event.to_dict())
    finally:
        watcher.cancel()


@router.websocket("/{project_id}/deploy/live")
async def deployment_live(
    websocket: WebSocket,
    project_id: UUID,
    broadcaster: LogBroadcaster = Depends(get_broadcaster),
):
    """
    Live output of the project's deployments.

    Events are JSON objects with a "type" of "log" or "finished". The socket
    is closed by the server after the finished event.
    """
    # Subscribe before accepting so nothing emitted after the handshake is missed
    subscription = broadcaster.subscribe(project_id)
    try:
        await websocket.accept()
        await relay_events(websocket, subscription)
    except WebSocketDisconnect:
        logger.debug(f"Live client for project {project_id} disconnected")
    finally:
        broadcaster.unsubscribe(subscription)

    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close()


async def _event_stream(broadcaster: LogBroadcaster, subscription: Subscription) -> AsyncIterator[str]:
    try:
        async for event in subscription:
            yield f"data: {json.dumps(event.to_dict())}\n\n"
    finally:
        broadcaster.unsubscribe(subscription)


@router.get("/{project_id}/deploy/stream")
async def stream_deployment_events(
    project_id: UUID,
    broadcaster: LogBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    """Same events as the live WebSocket, as server-sent events."""
    subscription = broadcaster.subscribe(project_id)
    return StreamingResponse(
        _event_stream(broadcaster, subscription),
        media_type="text/event-stream",
    )
