"""
Build endpoints: trigger, inspect, read logs, cancel, release.
"""

import logging
from typing import List, Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from api.src.config import Settings, get_settings
from api.src.dependencies import get_build_coordinator, get_pipeline_store, get_sink
from api.src.models.build import BuildCreate, BuildResponse, LogChunkResponse, ReleaseCreate
from api.src.models.release import ReleaseResponse
from api.src.services.pipeline_parser import (
    PipelineConfigError,
    parse_pipeline_config,
    steps_from_names,
)
from api.src.services.queue import enqueue_build, get_redis_client
from controller.src.errors import BuildNotFound, InvalidInput
from controller.src.models.step import SourceRef, StepDefinition
from controller.src.services import BuildCoordinator, LogSink, PipelineStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["builds"])

def resolve_steps(body: BuildCreate, settings: Settings) -> List[StepDefinition]:
    """Step definitions from the request, its pipeline YAML, or the defaults."""
    if body.pipeline is not None and body.steps is not None:
        raise InvalidInput("Give either 'steps' or 'pipeline', not both")

    if body.pipeline is not None:
        try:
            return parse_pipeline_config(body.pipeline)["steps"]
        except PipelineConfigError as e:
            raise InvalidInput(str(e))

    if body.steps is not None:
        return [StepDefinition(name=s) if isinstance(s, str) else s for s in body.steps]

    return steps_from_names(settings.default_step_names)

@router.post("/apps/{app_id}/builds", response_model=BuildResponse, status_code=201)
async def create_build(
    app_id: int,
    body: BuildCreate,
    coordinator: BuildCoordinator = Depends(get_build_coordinator),
    queue: redis.Redis = Depends(get_redis_client),
    settings: Settings = Depends(get_settings),
):
    """Create a pending build with its steps and queue it for a worker."""
    steps = resolve_steps(body, settings)
    source = SourceRef(commit_sha=body.commit_sha, branch=body.branch, tag=body.tag)

    job = await run_in_threadpool(
        coordinator.start_build,
        app_id,
        source,
        body.trigger,
        [step.name for step in steps],
        body.triggered_by,
    )
    await enqueue_build(queue, job.id, steps, version=body.version, changelog=body.changelog)
    logger.info(f"Build {job.id} for app {app_id} created and queued")
    return job

@router.get("/apps/{app_id}/builds", response_model=List[BuildResponse])
def list_builds(
    app_id: int,
    limit: int = 20,
    offset: int = 0,
    store: PipelineStore = Depends(get_pipeline_store),
):
    store.get_app(app_id)
    return store.list_builds(app_id, limit=limit, offset=offset)

@router.get("/builds/{build_id}", response_model=BuildResponse)
def get_build(build_id: int, store: PipelineStore = Depends(get_pipeline_store)):
    return store.get_build(build_id)

@router.get("/builds/{build_id}/logs", response_model=List[LogChunkResponse])
def get_build_logs(
    build_id: int,
    step_id: Optional[int] = None,
    start: int = 0,
    end: Optional[int] = None,
    store: PipelineStore = Depends(get_pipeline_store),
    sink: LogSink = Depends(get_sink),
):
    """Log chunks with start <= chunk_index < end, for the whole build or one step."""
    if start < 0 or (end is not None and end < start):
        raise InvalidInput("Log range must satisfy 0 <= start <= end")

    store.get_build(build_id)
    if step_id is not None and store.get_step(step_id).build_id != build_id:
        raise BuildNotFound(f"Step {step_id} does not belong to build {build_id}")
    return sink.read_range(build_id, step_id=step_id, start=start, end=end)

@router.post("/builds/{build_id}/cancel", response_model=BuildResponse)
def cancel_build(build_id: int, coordinator: BuildCoordinator = Depends(get_build_coordinator)):
    coordinator.cancel(build_id)
    return coordinator.store.get_build(build_id)

@router.post("/builds/{build_id}/release", response_model=ReleaseResponse, status_code=201)
def create_release(
    build_id: int,
    body: ReleaseCreate,
    coordinator: BuildCoordinator = Depends(get_build_coordinator),
):
    """Release a succeeded build that has none yet, e.g. after a version conflict."""
    return coordinator.materialize_release(build_id, body.version, body.changelog)
