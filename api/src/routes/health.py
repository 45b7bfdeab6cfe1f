from fastapi import APIRouter, Depends
from sqlalchemy import text
import redis.asyncio as redis

from api.src.dependencies import get_pipeline_store
from api.src.services.queue import get_queue_lengths, get_redis_client
from controller.src.services import PipelineStore

router = APIRouter(tags=["health"])

def _check_db(store: PipelineStore) -> str:
    try:
        with store.transaction() as session:
            session.execute(text("SELECT 1"))
        return "healthy"
    except Exception as e:
        return f"unhealthy: {e}"

async def _check_redis(client: redis.Redis) -> str:
    try:
        await client.ping()
        return "healthy"
    except Exception as e:
        return f"unhealthy: {e}"

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "paastel-api"}

@router.get("/health/db")
def db_health_check(store: PipelineStore = Depends(get_pipeline_store)):
    status = _check_db(store)
    if status == "healthy":
        return {"status": "healthy", "database": "connected"}
    return {"status": "unhealthy", "database": status}

@router.get("/health/redis")
async def redis_health_check(client: redis.Redis = Depends(get_redis_client)):
    status = await _check_redis(client)
    if status == "healthy":
        return {"status": "healthy", "redis": "connected"}
    return {"status": "unhealthy", "redis": status}

@router.get("/health/queue")
async def queue_health_check(client: redis.Redis = Depends(get_redis_client)):
    try:
        return {"status": "healthy", "queues": await get_queue_lengths(client)}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}

@router.get("/health/all")
async def full_health_check(
    store: PipelineStore = Depends(get_pipeline_store),
    client: redis.Redis = Depends(get_redis_client),
):
    """Combined health check for all services."""
    health = {
        "api": "healthy",
        "database": _check_db(store),
        "redis": await _check_redis(client),
    }
    overall = "healthy" if all(v == "healthy" for v in health.values()) else "degraded"
    return {"status": overall, "services": health}
