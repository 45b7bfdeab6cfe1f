from api.src.models.build import (
    BuildCreate,
    BuildResponse,
    StepResponse,
    LogChunkResponse,
    ReleaseCreate,
)
from api.src.models.release import (
    ReleaseResponse,
    DeployCreate,
    DeployResponse,
)

__all__ = [
    "BuildCreate",
    "BuildResponse",
    "StepResponse",
    "LogChunkResponse",
    "ReleaseCreate",
    "ReleaseResponse",
    "DeployCreate",
    "DeployResponse",
]
