"""
Deploy coordinator - places a built release into an environment.
"""

import logging
from typing import Callable, Optional

from controller.src.backends.base import DeployBackend
from controller.src.config import Settings, get_settings
from controller.src.errors import (
    AdmissionDenied,
    AppNotFound,
    InvalidInput,
    PermissionDenied,
    ReleaseNotReady,
    RetryableError,
    StaleState,
)
from controller.src.models.db import Deploy, Release
from controller.src.models.deploy import DeployOutcome, DeployTarget
from controller.src.models.status import DeployStatus, ReleaseStatus, is_terminal
from controller.src.services.build_coordinator import AccessCheck
from controller.src.services.pipeline_store import PipelineStore
from controller.src.services.retry import RetryConfig, run_with_retry
from controller.src.services.signals import Signals

logger = logging.getLogger(__name__)

# (store, release, environment) -> admit?
AdmissionRule = Callable[[PipelineStore, Release, str], bool]

def serialize_environment(store: PipelineStore, release: Release, environment: str) -> bool:
    """Admit a deploy only when nothing else is pending or running on (app, environment)."""
    active = store.list_deploys(
        release.app_id,
        environment=environment,
        statuses=[DeployStatus.PENDING, DeployStatus.RUNNING],
    )
    return not active

class DeployCoordinator:
    def __init__(
        self,
        store: PipelineStore,
        backend: Optional[DeployBackend] = None,
        signals: Optional[Signals] = None,
        retry: Optional[RetryConfig] = None,
        settings: Optional[Settings] = None,
        admission: Optional[AdmissionRule] = None,
        access_check: Optional[AccessCheck] = None,
    ):
        self.store = store
        self.backend = backend
        self.signals = signals
        self.settings = settings or get_settings()
        self.retry = retry or RetryConfig.from_settings(self.settings)
        self.admission = admission
        self.access_check = access_check

    def start_deploy(
        self,
        release_id: int,
        environment: str,
        target_cluster: Optional[str] = None,
        target_region: Optional[str] = None,
        triggered_by: Optional[int] = None,
    ) -> Deploy:
        if not environment or not environment.strip():
            raise InvalidInput("Deploy needs an environment")

        release = self.store.get_release(release_id)
        if self.access_check is not None and not self.access_check(release.app_id, "deploy"):
            raise PermissionDenied(f"Not allowed to deploy app {release.app_id}")
        if release.status != ReleaseStatus.BUILT:
            raise ReleaseNotReady(f"Release {release.version} is {release.status.value}, not built")
        if self.admission is not None and not self.admission(self.store, release, environment):
            raise AdmissionDenied(f"Deploy of {release.version} to {environment} not admitted")

        return self.store.create_deploy(
            release,
            environment=environment.strip(),
            target_cluster=target_cluster,
            target_region=target_region,
            triggered_by=triggered_by,
        )

    def _target(self, deploy: Deploy) -> DeployTarget:
        release = self.store.get_release(deploy.release_id)
        app = self.store.get_app(deploy.app_id)
        return DeployTarget(
            deploy_id=deploy.id,
            app_id=deploy.app_id,
            app_slug=app.slug,
            release_version=release.version,
            image_ref=release.image_ref,
            environment=deploy.environment,
            cluster=deploy.target_cluster,
            region=deploy.target_region,
            should_cancel=lambda: self._cancel_requested(deploy.id),
        )

    def _cancel_requested(self, deploy_id: int) -> bool:
        if self.signals is None:
            return False
        return self.signals.cancel_requested("deploy", deploy_id)

    def _call_backend(self, target: DeployTarget) -> DeployOutcome:
        try:
            return self.backend.deploy(target)
        except RetryableError as e:
            logger.warning(f"Deploy {target.deploy_id} hit a transient backend error: {e}")
            return DeployOutcome.failure(str(e), retryable=True)
        except Exception as e:
            logger.exception(f"Deploy {target.deploy_id} backend raised")
            return DeployOutcome.failure(str(e) or type(e).__name__, retryable=False)

    def run(self, deploy_id: int) -> Deploy:
        """Drive a pending deploy to succeeded, failed or canceled."""
        if self.backend is None:
            raise RuntimeError("DeployCoordinator.run needs a deployment backend")
        try:
            deploy = self.store.transition_deploy(deploy_id, DeployStatus.PENDING, DeployStatus.RUNNING)
        except StaleState as e:
            if e.actual == DeployStatus.CANCELED.value:
                logger.info(f"Deploy {deploy_id} was canceled before it started")
                return self.store.get_deploy(deploy_id)
            raise

        try:
            target = self._target(deploy)
        except AppNotFound:
            return self._finish(deploy_id, DeployOutcome.failure("app no longer exists", retryable=False))

        logger.info(
            f"Deploying release {target.release_version} of {target.app_slug} "
            f"to {target.environment} (deploy {deploy_id})"
        )

        def attempt(number: int) -> DeployOutcome:
            return self._call_backend(target)

        label = f"Deploy {deploy_id}"
        if self.signals is not None:
            with self.signals.heartbeat("deploy", deploy_id, self.settings.heartbeat_interval):
                outcome = run_with_retry(self.retry, attempt, label=label)
        else:
            outcome = run_with_retry(self.retry, attempt, label=label)

        deploy = self._finish(deploy_id, outcome)
        if self.signals is not None:
            self.signals.clear("deploy", deploy_id)
        return deploy

    def _finish(self, deploy_id: int, outcome: DeployOutcome) -> Deploy:
        values = {}
        if outcome.pipeline_url:
            values["pipeline_url"] = outcome.pipeline_url
        if outcome.logs_url:
            values["logs_url"] = outcome.logs_url
        if outcome.status == DeployStatus.FAILED:
            values["error_message"] = outcome.error

        try:
            deploy = self.store.transition_deploy(deploy_id, DeployStatus.RUNNING, outcome.status, **values)
        except StaleState as e:
            # Reconciler got there first; its verdict stands
            logger.warning(f"Deploy {deploy_id} already {e.actual}, dropping {outcome.status.value}")
            return self.store.get_deploy(deploy_id)

        if outcome.status == DeployStatus.FAILED:
            logger.error(f"Deploy {deploy_id} failed: {outcome.error}")
        else:
            logger.info(f"Deploy {deploy_id} {outcome.status.value}")
        return deploy

    def cancel(self, deploy_id: int) -> Deploy:
        """
        Pending deploys are canceled on the spot. Running ones get a cancel
        signal and the backend is told to stop; the running coordinator
        records the final status once the backend answers.
        """
        deploy = self.store.get_deploy(deploy_id)
        if self.access_check is not None and not self.access_check(deploy.app_id, "deploy"):
            raise PermissionDenied(f"Not allowed to deploy app {deploy.app_id}")
        if is_terminal(deploy.status):
            return deploy

        if deploy.status == DeployStatus.PENDING:
            try:
                deploy = self.store.transition_deploy(deploy_id, DeployStatus.PENDING, DeployStatus.CANCELED)
                logger.info(f"Canceled pending deploy {deploy_id}")
                return deploy
            except StaleState:
                deploy = self.store.get_deploy(deploy_id)
                if is_terminal(deploy.status):
                    return deploy

        if self.signals is not None:
            self.signals.request_cancel("deploy", deploy_id)
        if self.backend is not None:
            try:
                self.backend.cancel(self._target(deploy))
            except Exception as e:
                logger.warning(f"Backend cancel for deploy {deploy_id} failed: {e}")
        logger.info(f"Requested cancel of running deploy {deploy_id}")
        return deploy
