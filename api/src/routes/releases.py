"""
Release endpoints.
"""

import logging
from typing import List

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Response
from fastapi.concurrency import run_in_threadpool

from api.src.dependencies import get_deploy_coordinator, get_pipeline_store
from api.src.models.release import DeployCreate, DeployResponse, ReleaseResponse
from api.src.services.queue import enqueue_deploy, get_redis_client
from controller.src.services import DeployCoordinator, PipelineStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["releases"])

@router.get("/apps/{app_id}/releases", response_model=List[ReleaseResponse])
def list_releases(app_id: int, store: PipelineStore = Depends(get_pipeline_store)):
    store.get_app(app_id)
    return store.list_releases(app_id)

@router.get("/releases/{release_id}", response_model=ReleaseResponse)
def get_release(release_id: int, store: PipelineStore = Depends(get_pipeline_store)):
    return store.get_release(release_id)

@router.delete("/releases/{release_id}", status_code=204)
def delete_release(release_id: int, store: PipelineStore = Depends(get_pipeline_store)):
    """Refused with 409 while any deploy references the release."""
    store.delete_release(release_id)
    return Response(status_code=204)

@router.post("/releases/{release_id}/deploys", response_model=DeployResponse, status_code=201)
async def create_deploy(
    release_id: int,
    body: DeployCreate,
    coordinator: DeployCoordinator = Depends(get_deploy_coordinator),
    queue: redis.Redis = Depends(get_redis_client),
):
    """Create a pending deploy of a built release and queue it for a worker."""
    deploy = await run_in_threadpool(
        coordinator.start_deploy,
        release_id,
        body.environment,
        body.target_cluster,
        body.target_region,
        body.triggered_by,
    )
    await enqueue_deploy(queue, deploy.id)
    logger.info(f"Deploy {deploy.id} of release {release_id} to {deploy.environment} queued")
    return deploy
