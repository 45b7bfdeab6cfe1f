from controller.src.config import Settings, get_settings
from controller.src.backends.base import DeployBackend

def get_deploy_backend(settings: Settings = None) -> DeployBackend:
    """Deployment backend for the configured target."""
    settings = settings or get_settings()

    if settings.deploy_backend == "k8s":
        from controller.src.backends.kubernetes import KubernetesDeployBackend
        return KubernetesDeployBackend()
    if settings.deploy_backend == "external":
        from controller.src.backends.external import ExternalDeployBackend
        return ExternalDeployBackend(settings.external_deploy_url)

    raise ValueError(f"Unknown deploy backend: {settings.deploy_backend}")

__all__ = ["DeployBackend", "get_deploy_backend"]
