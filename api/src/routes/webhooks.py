"""
GitHub webhook endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool

from api.src.config import Settings, get_settings
from api.src.dependencies import get_build_coordinator
from api.src.services.github import (
    RepositoryError,
    cleanup_repo,
    clone_repository,
    fetch_pipeline_config,
    parse_webhook_payload,
    repo_url_candidates,
    verify_signature,
)
from api.src.services.pipeline_parser import PipelineConfigError, parse_pipeline_dict, steps_from_names
from api.src.services.queue import enqueue_build, get_redis_client
from controller.src.models.db import App
from controller.src.models.status import BuildTrigger
from controller.src.models.step import SourceRef, StepDefinition
from controller.src.services import BuildCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

def find_apps(coordinator: BuildCoordinator, webhook_data: Dict[str, Any]) -> List[App]:
    """Apps whose repo_url names the pushed repository."""
    apps = {}
    for url in repo_url_candidates(webhook_data):
        for app in coordinator.store.find_apps_by_repo_url(url):
            apps[app.id] = app
    return list(apps.values())

async def load_steps(webhook_data: Dict[str, Any], settings: Settings) -> List[StepDefinition]:
    """
    Steps from the repository's pipeline file, or the default steps when
    there is none (or cloning is switched off).
    """
    if not settings.webhook_clone:
        return steps_from_names(settings.default_step_names)

    repo_path = None
    try:
        repo_path = await clone_repository(webhook_data["clone_url"], webhook_data["commit_sha"])
        pipeline_config = await fetch_pipeline_config(repo_path)
    finally:
        if repo_path:
            cleanup_repo(repo_path)

    if not pipeline_config:
        logger.info(f"No pipeline config in {webhook_data['repo_full_name']}, using default steps")
        return steps_from_names(settings.default_step_names)
    return parse_pipeline_dict(pipeline_config)["steps"]

async def process_push_event(
    payload: dict,
    coordinator: BuildCoordinator,
    queue: redis.Redis,
    settings: Settings,
):
    """Create and queue a git_push build for every app tracking the pushed repository."""
    webhook_data = parse_webhook_payload(payload)

    if webhook_data["deleted"]:
        return {"status": "skipped", "reason": "Ref deleted"}

    if not webhook_data["commit_sha"]:
        logger.warning("No commit SHA in webhook payload")
        return {"status": "skipped", "reason": "No commit SHA"}

    apps = await run_in_threadpool(find_apps, coordinator, webhook_data)
    if not apps:
        logger.info(f"No app tracks {webhook_data['repo_full_name']}")
        return {"status": "skipped", "reason": "No app for this repository"}

    try:
        steps = await load_steps(webhook_data, settings)
    except (PipelineConfigError, RepositoryError) as e:
        logger.error(f"Cannot build {webhook_data['repo_full_name']}: {e}")
        return {"status": "error", "reason": str(e)}

    source = SourceRef(
        commit_sha=webhook_data["commit_sha"],
        branch=webhook_data["branch"],
        tag=webhook_data["tag"],
    )
    build_ids = []
    for app in apps:
        job = await run_in_threadpool(
            coordinator.start_build,
            app.id,
            source,
            BuildTrigger.GIT_PUSH,
            [step.name for step in steps],
        )
        await enqueue_build(queue, job.id, steps)
        build_ids.append(job.id)
        logger.info(f"Build {job.id} for app {app.slug} queued from push to {webhook_data['repo_full_name']}")

    return {
        "status": "queued",
        "builds": build_ids,
        "steps": len(steps),
    }

@router.post("/github")
async def github_webhook(
    request: Request,
    coordinator: BuildCoordinator = Depends(get_build_coordinator),
    queue: redis.Redis = Depends(get_redis_client),
    settings: Settings = Depends(get_settings),
    x_hub_signature_256: Optional[str] = Header(None),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    body = await request.body()

    if not verify_signature(body, x_hub_signature_256 or "", secret=settings.github_webhook_secret):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event == "push":
        return await process_push_event(payload, coordinator, queue, settings)

    return {
        "status": "ignored",
        "event": x_github_event,
        "message": f"Event type '{x_github_event}' not handled"
    }
