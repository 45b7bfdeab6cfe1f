"""
Redis queue service for build and deploy requests.
"""

import redis.asyncio as redis
from typing import List, Optional

from api.src.config import get_settings
from controller.src.models.deploy import DeployRequest
from controller.src.models.step import BuildRequest, StepDefinition
from controller.src.worker import BUILD_QUEUE, DEPLOY_QUEUE

settings = get_settings()

async def get_redis_client():
    """FastAPI dependency yielding an async Redis client."""
    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()

async def enqueue_build(
    client: redis.Redis,
    build_id: int,
    steps: List[StepDefinition],
    version: Optional[str] = None,
    changelog: Optional[str] = None,
):
    """Hand a pending build to the controller workers."""
    request = BuildRequest(build_id=build_id, steps=steps, version=version, changelog=changelog)
    await client.lpush(BUILD_QUEUE, request.model_dump_json())

async def enqueue_deploy(client: redis.Redis, deploy_id: int):
    """Hand a pending deploy to the controller workers."""
    request = DeployRequest(deploy_id=deploy_id)
    await client.lpush(DEPLOY_QUEUE, request.model_dump_json())

async def get_queue_lengths(client: redis.Redis) -> dict:
    """Number of requests waiting in each queue."""
    return {
        "builds": await client.llen(BUILD_QUEUE),
        "deploys": await client.llen(DEPLOY_QUEUE),
    }
