"""
Kubernetes object builders for build steps and app deploys.
"""

from kubernetes import client
from typing import List, Dict, Optional
import re

from controller.src.config import get_settings

settings = get_settings()

def _dns_label(value: str, limit: int) -> str:
    # K8s names must be lowercase, alphanumeric or '-', max 63 chars
    label = re.sub(r"[^a-z0-9-]", "-", value.lower())
    label = re.sub(r"-+", "-", label).strip("-")
    return label[:limit].rstrip("-") or "x"

def build_job_name(build_id: int, position: int, step_name: str, attempt: int = 1) -> str:
    """Unique, stable job name per (build, step, attempt)."""
    return f"ps-b{build_id}-s{position}-a{attempt}-{_dns_label(step_name, 20)}"

def build_step_job(
    build_id: int,
    position: int,
    step_name: str,
    image: str,
    commands: List[str],
    attempt: int = 1,
    env_vars: Optional[Dict[str, str]] = None,
    timeout: int = 600,
    namespace: str = None,
) -> client.V1Job:
    """Build a Kubernetes Job running one build step."""
    job_name = build_job_name(build_id, position, step_name, attempt)
    labels = {
        "app": "paastel",
        "paastel/build-id": str(build_id),
        "paastel/step-position": str(position),
    }

    env = [
        client.V1EnvVar(name="PAASTEL_BUILD_ID", value=str(build_id)),
        client.V1EnvVar(name="PAASTEL_STEP_POSITION", value=str(position)),
        client.V1EnvVar(name="PAASTEL_STEP_NAME", value=step_name),
    ]
    for key, value in (env_vars or {}).items():
        env.append(client.V1EnvVar(name=key, value=value))

    # Join commands with && so it fails fast on error
    shell_command = " && ".join(commands)

    container = client.V1Container(
        name="step",
        image=image,
        command=["/bin/sh", "-c"],
        args=[shell_command],
        env=env,
        resources=client.V1ResourceRequirements(
            requests={"cpu": "100m", "memory": "128Mi"},
            limits={"cpu": "1", "memory": "1Gi"},
        ),
    )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(labels=labels),
        spec=client.V1PodSpec(containers=[container], restart_policy="Never"),
    )

    job_spec = client.V1JobSpec(
        template=template,
        backoff_limit=0,  # retries belong to the build coordinator
        active_deadline_seconds=timeout,
        ttl_seconds_after_finished=settings.job_ttl_after_finished,
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(
            name=job_name,
            namespace=namespace or settings.k8s_namespace,
            labels=labels,
        ),
        spec=job_spec,
    )

def get_job_status(job: client.V1Job) -> str:
    """
    Determine job status from Kubernetes Job object.
    Returns: 'pending', 'running', 'succeeded', 'failed'
    """
    if job.status is None:
        return "pending"

    if job.status.succeeded and job.status.succeeded > 0:
        return "succeeded"

    if job.status.failed and job.status.failed > 0:
        return "failed"

    if job.status.active and job.status.active > 0:
        return "running"

    return "pending"

def deployment_namespace(environment: str) -> str:
    return _dns_label(f"{settings.k8s_namespace}-{environment}", 63)

def build_deployment(
    app_slug: str,
    deploy_id: int,
    release_version: str,
    image: str,
    environment: str,
    replicas: int = 1,
) -> client.V1Deployment:
    """Deployment placing a release image into an environment."""
    name = _dns_label(app_slug, 63)
    selector = {"app": name}
    labels = {
        **selector,
        "paastel/environment": _dns_label(environment, 63),
        "paastel/release": _dns_label(release_version, 63),
    }

    container = client.V1Container(
        name=name,
        image=image,
        env=[
            client.V1EnvVar(name="PAASTEL_ENVIRONMENT", value=environment),
            client.V1EnvVar(name="PAASTEL_RELEASE", value=release_version),
        ],
    )

    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=deployment_namespace(environment),
            labels=labels,
            annotations={"paastel/deploy-id": str(deploy_id)},
        ),
        spec=client.V1DeploymentSpec(
            replicas=replicas,
            selector=client.V1LabelSelector(match_labels=selector),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=labels),
                spec=client.V1PodSpec(containers=[container]),
            ),
        ),
    )

def get_rollout_status(deployment: client.V1Deployment) -> str:
    """
    Determine rollout state of a Deployment.
    Returns: 'progressing', 'available', 'failed'
    """
    status = deployment.status
    if status is None:
        return "progressing"

    for condition in status.conditions or []:
        if condition.type == "Progressing" and condition.reason == "ProgressDeadlineExceeded":
            return "failed"

    desired = deployment.spec.replicas if deployment.spec.replicas is not None else 1
    generation_seen = (status.observed_generation or 0) >= (deployment.metadata.generation or 0)
    if (
        generation_seen
        and (status.updated_replicas or 0) >= desired
        and (status.available_replicas or 0) >= desired
    ):
        return "available"

    return "progressing"
