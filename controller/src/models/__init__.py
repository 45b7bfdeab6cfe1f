from controller.src.models.status import (
    BuildStatus,
    BuildTrigger,
    ReleaseStatus,
    DeployStatus,
    is_terminal,
)
from controller.src.models.step import (
    SourceRef,
    RunnerInfo,
    StepDefinition,
    StepContext,
    StepOutcome,
    BuildRequest,
)
from controller.src.models.deploy import (
    DeployTarget,
    DeployOutcome,
    DeployRequest,
)

__all__ = [
    "BuildStatus",
    "BuildTrigger",
    "ReleaseStatus",
    "DeployStatus",
    "is_terminal",
    "SourceRef",
    "RunnerInfo",
    "StepDefinition",
    "StepContext",
    "StepOutcome",
    "BuildRequest",
    "DeployTarget",
    "DeployOutcome",
    "DeployRequest",
]
