"""
External deployment backend - hands the rollout to an HTTP deploy service.
"""

import logging
import time

import httpx

from controller.src.backends.base import DeployBackend
from controller.src.errors import RetryableError
from controller.src.executors.external import raise_for_transient
from controller.src.models.deploy import DeployOutcome, DeployTarget
from controller.src.models.status import DeployStatus

logger = logging.getLogger(__name__)

class ExternalDeployBackend(DeployBackend):
    name = "external"

    def __init__(self, base_url: str, client: httpx.Client = None, poll_interval: float = 3.0):
        self.client = client or httpx.Client(base_url=base_url, timeout=30.0)
        self.poll_interval = poll_interval

    def _call(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RetryableError(f"Deploy service unreachable: {e}")
        raise_for_transient(response)
        return response

    def deploy(self, target: DeployTarget) -> DeployOutcome:
        payload = {
            "deploy_id": target.deploy_id,
            "app": target.app_slug,
            "release": target.release_version,
            "image": target.image_ref,
            "environment": target.environment,
            "cluster": target.cluster,
            "region": target.region,
        }
        try:
            created = self._call("POST", "/deploys", json=payload).json()
        except httpx.HTTPStatusError as e:
            return DeployOutcome.failure(
                f"Deploy service rejected deploy: {e.response.status_code}", retryable=False
            )
        links = {
            "pipeline_url": created.get("url"),
            "logs_url": created.get("logs_url"),
        }

        cancel_sent = False
        while True:
            state = self._call("GET", f"/deploys/{target.deploy_id}").json()
            status = state.get("status")
            if status == DeployStatus.SUCCEEDED.value:
                return DeployOutcome.success(**links)
            if status == DeployStatus.FAILED.value:
                return DeployOutcome.failure(
                    state.get("error") or "Deploy failed",
                    retryable=bool(state.get("retryable", False)),
                    **links,
                )
            if status == DeployStatus.CANCELED.value:
                return DeployOutcome.canceled(**links)
            if not cancel_sent and target.should_cancel():
                self.cancel(target)
                cancel_sent = True
            time.sleep(self.poll_interval)

    def cancel(self, target: DeployTarget):
        try:
            self._call("POST", f"/deploys/{target.deploy_id}/cancel")
        except (RetryableError, httpx.HTTPStatusError) as e:
            logger.warning(f"Cancel of deploy {target.deploy_id} not delivered: {e}")
