from controller.src.config import Settings, get_settings
from controller.src.executors.base import (
    StepExecutor,
    StepRun,
    run_step,
    find_image_ref,
    IMAGE_REF_MARKER,
)

def get_executor(settings: Settings = None) -> StepExecutor:
    """Executor for the configured runner type."""
    settings = settings or get_settings()

    if settings.runner_type == "k8s":
        from controller.src.executors.kubernetes import KubernetesStepExecutor
        return KubernetesStepExecutor()
    if settings.runner_type == "local":
        from controller.src.executors.local import LocalStepExecutor
        return LocalStepExecutor()
    if settings.runner_type == "external":
        from controller.src.executors.external import ExternalCIExecutor
        return ExternalCIExecutor(settings.external_ci_url)

    raise ValueError(f"Unknown runner type: {settings.runner_type}")

__all__ = [
    "StepExecutor",
    "StepRun",
    "run_step",
    "find_image_ref",
    "IMAGE_REF_MARKER",
    "get_executor",
]
