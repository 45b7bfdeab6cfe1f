from controller.src.k8s.client import (
    init_k8s_client,
    get_batch_api,
    get_core_api,
    get_apps_api,
    ensure_namespace,
    delete_job,
    is_transient,
)
from controller.src.k8s.job_builder import (
    build_step_job,
    build_job_name,
    get_job_status,
    build_deployment,
    deployment_namespace,
    get_rollout_status,
)

__all__ = [
    "init_k8s_client",
    "get_batch_api",
    "get_core_api",
    "get_apps_api",
    "ensure_namespace",
    "delete_job",
    "is_transient",
    "build_step_job",
    "build_job_name",
    "get_job_status",
    "build_deployment",
    "deployment_namespace",
    "get_rollout_status",
]
