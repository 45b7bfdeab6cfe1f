import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from api.src.config import get_settings
from api.src.routes import (
    builds_router,
    deploys_router,
    health_router,
    releases_router,
    webhooks_router,
)
from controller.src.errors import (
    Conflict,
    IllegalTransition,
    InvalidInput,
    NotFound,
    PermissionDenied,
    PipelineError,
    ReleaseNotReady,
    StaleState,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

settings = get_settings()

# First match wins, so subclasses go before their bases
ERROR_STATUS = [
    (InvalidInput, 400),
    (PermissionDenied, 403),
    (NotFound, 404),
    (Conflict, 409),
    (StaleState, 409),
    (IllegalTransition, 409),
    (ReleaseNotReady, 409),
]

def status_for(exc: PipelineError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting PaaStel API")
    yield
    logger.info("Shutting down PaaStel API")

app = FastAPI(
    title="PaaStel",
    description="Build, release and deploy pipeline for PaaStel apps",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )

app.include_router(health_router)
app.include_router(builds_router, prefix="/api")
app.include_router(releases_router, prefix="/api")
app.include_router(deploys_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "PaaStel",
        "version": "0.1.0",
        "docs": "/docs"
    }

def main():
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)

if __name__ == "__main__":
    main()
