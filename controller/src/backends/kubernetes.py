"""
Kubernetes deployment backend - applies a Deployment and waits for the rollout.
"""

import logging
import time

from kubernetes.client.rest import ApiException

from controller.src.backends.base import DeployBackend
from controller.src.config import get_settings
from controller.src.errors import RetryableError
from controller.src.k8s import (
    build_deployment,
    ensure_namespace,
    get_apps_api,
    get_core_api,
    get_rollout_status,
    is_transient,
)
from controller.src.models.deploy import DeployOutcome, DeployTarget

logger = logging.getLogger(__name__)
settings = get_settings()

class KubernetesDeployBackend(DeployBackend):
    name = "k8s"

    def __init__(self, apps_v1=None, core_v1=None, timeout: int = None, poll_interval: float = 3.0):
        self.apps_v1 = apps_v1 or get_apps_api()
        self.core_v1 = core_v1 or get_core_api()
        self.timeout = timeout or settings.deploy_timeout
        self.poll_interval = poll_interval

    def deploy(self, target: DeployTarget) -> DeployOutcome:
        if not target.image_ref:
            return DeployOutcome.failure(
                f"Release {target.release_version} has no image to deploy", retryable=False
            )

        deployment = build_deployment(
            app_slug=target.app_slug,
            deploy_id=target.deploy_id,
            release_version=target.release_version,
            image=target.image_ref,
            environment=target.environment,
        )
        name = deployment.metadata.name
        namespace = deployment.metadata.namespace

        try:
            ensure_namespace(namespace, self.core_v1)
            self._apply(deployment)
        except ApiException as e:
            if is_transient(e):
                raise RetryableError(f"Kubernetes API unavailable: {e.reason}")
            return DeployOutcome.failure(f"Deployment rejected: {e.reason}", retryable=False)

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                current = self.apps_v1.read_namespaced_deployment(name=name, namespace=namespace)
            except ApiException as e:
                if not is_transient(e):
                    return DeployOutcome.failure(f"Deployment vanished: {e.reason}", retryable=False)
                current = None

            if current is not None:
                state = get_rollout_status(current)
                if state == "available":
                    logger.info(f"Deployment {namespace}/{name} is available")
                    return DeployOutcome.success()
                if state == "failed":
                    return DeployOutcome.failure(
                        f"Rollout of {name} exceeded its progress deadline", retryable=False
                    )

            if target.should_cancel():
                self.cancel(target)
                return DeployOutcome.canceled()
            if time.monotonic() > deadline:
                return DeployOutcome.failure(
                    f"Rollout of {name} not available after {self.timeout}s", retryable=False
                )
            time.sleep(self.poll_interval)

    def _apply(self, deployment):
        name = deployment.metadata.name
        namespace = deployment.metadata.namespace
        try:
            self.apps_v1.read_namespaced_deployment(name=name, namespace=namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            self.apps_v1.create_namespaced_deployment(namespace=namespace, body=deployment)
            logger.info(f"Created deployment {namespace}/{name}")
            return
        self.apps_v1.replace_namespaced_deployment(name=name, namespace=namespace, body=deployment)
        logger.info(f"Updated deployment {namespace}/{name}")

    def cancel(self, target: DeployTarget):
        """Pause the rollout where it stands."""
        deployment = build_deployment(
            app_slug=target.app_slug,
            deploy_id=target.deploy_id,
            release_version=target.release_version,
            image=target.image_ref,
            environment=target.environment,
        )
        try:
            self.apps_v1.patch_namespaced_deployment(
                name=deployment.metadata.name,
                namespace=deployment.metadata.namespace,
                body={"spec": {"paused": True}},
            )
            logger.info(f"Paused rollout of {deployment.metadata.name} for deploy {target.deploy_id}")
        except ApiException as e:
            logger.warning(f"Could not pause rollout for deploy {target.deploy_id}: {e.reason}")
