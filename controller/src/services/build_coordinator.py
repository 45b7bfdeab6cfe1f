"""
Build coordinator - runs a build's steps in order and materializes its release.
"""

import logging
from typing import Callable, Optional, Sequence

from controller.src.config import Settings, get_settings
from controller.src.errors import InvalidInput, PermissionDenied, StaleState, VersionConflict
from controller.src.executors.base import StepExecutor, run_step
from controller.src.models.db import BuildJob, BuildStep, Release
from controller.src.models.status import BuildStatus, BuildTrigger, is_terminal
from controller.src.models.step import RunnerInfo, SourceRef, StepContext, StepDefinition, StepOutcome
from controller.src.services.log_sink import LogSink
from controller.src.services.pipeline_store import PipelineStore
from controller.src.services.retry import RetryConfig, run_with_retry
from controller.src.services.signals import Signals

logger = logging.getLogger(__name__)

# (app_id, action) -> allowed; answered by the identity service
AccessCheck = Callable[[int, str], bool]

class BuildCoordinator:
    """
    One instance can drive many builds, one call to run() per build.
    Nothing about a build's status is cached between store calls.
    """

    def __init__(
        self,
        store: PipelineStore,
        log_sink: LogSink,
        executor: Optional[StepExecutor] = None,
        signals: Optional[Signals] = None,
        retry: Optional[RetryConfig] = None,
        settings: Optional[Settings] = None,
        access_check: Optional[AccessCheck] = None,
    ):
        self.store = store
        self.log_sink = log_sink
        self.executor = executor
        self.signals = signals
        self.settings = settings or get_settings()
        self.retry = retry or RetryConfig.from_settings(self.settings)
        self.access_check = access_check

    def _authorize(self, app_id: int, action: str):
        if self.access_check is not None and not self.access_check(app_id, action):
            raise PermissionDenied(f"Not allowed to {action} app {app_id}")

    # ---------- start ----------

    def start_build(
        self,
        app_id: int,
        source: SourceRef,
        trigger: BuildTrigger,
        steps: Sequence[str],
        triggered_by: Optional[int] = None,
    ) -> BuildJob:
        """Create the job and its pending steps (positions 1..N) atomically."""
        self._authorize(app_id, "build")
        if isinstance(steps, str):
            raise InvalidInput("steps must be a list of step names")
        names = list(steps)
        if not names:
            raise InvalidInput("A build needs at least one step")
        for i, name in enumerate(names):
            if not isinstance(name, str) or not name.strip():
                raise InvalidInput(f"Step {i + 1} needs a non-empty name")

        return self.store.create_build(
            app_id=app_id,
            source=source,
            trigger=trigger,
            step_names=[name.strip() for name in names],
            triggered_by=triggered_by,
        )

    # ---------- run ----------

    def run(
        self,
        build_id: int,
        definitions: Optional[Sequence[StepDefinition]] = None,
        version: Optional[str] = None,
        changelog: Optional[str] = None,
    ) -> BuildJob:
        """
        Execute a pending build to a terminal status.

        Steps run strictly by position. The first failed step fails the build
        and the steps after it are left pending. When every step succeeds and
        a version is given, a release is created and finalized; a taken
        version raises VersionConflict after the build is already recorded
        as succeeded.
        """
        if self.executor is None:
            raise RuntimeError("BuildCoordinator.run needs a step executor")
        runner = RunnerInfo(name=self.settings.runner_name, type=self.executor.runner_type)
        try:
            job = self.store.transition_build(
                build_id,
                BuildStatus.PENDING,
                BuildStatus.RUNNING,
                runner_name=runner.name,
                runner_type=runner.type,
            )
        except StaleState as e:
            if e.actual == BuildStatus.CANCELED.value:
                logger.info(f"Build {build_id} was canceled before it started")
                return self.store.get_build(build_id)
            raise

        logger.info(f"Starting build {build_id} for app {job.app_id}")
        source = SourceRef(commit_sha=job.commit_sha, branch=job.branch, tag=job.tag)
        by_position = {i: d for i, d in enumerate(definitions or [], start=1)}

        if self.signals is not None:
            with self.signals.heartbeat("build", build_id, self.settings.heartbeat_interval):
                finished = self._run_steps(job, source, by_position)
        else:
            finished = self._run_steps(job, source, by_position)

        if not finished:
            return self.store.get_build(build_id)

        try:
            job = self.store.transition_build(build_id, BuildStatus.RUNNING, BuildStatus.SUCCEEDED)
        except StaleState:
            logger.info(f"Build {build_id} was canceled after its last step")
            return self.store.get_build(build_id)
        logger.info(f"Build {build_id} succeeded")

        if version:
            self.materialize_release(build_id, version, changelog)
        return self.store.get_build(build_id)

    def _cancel_requested(self, build_id: int) -> bool:
        return self.store.get_build_status(build_id) == BuildStatus.CANCELED

    def _run_steps(self, job: BuildJob, source: SourceRef, definitions: dict) -> bool:
        """Returns True when every step succeeded."""
        for step in self.store.list_steps(job.id):
            if self._cancel_requested(job.id):
                logger.info(f"Build {job.id} canceled, not starting step {step.position}")
                return False

            try:
                self.store.transition_step(step.id, BuildStatus.PENDING, BuildStatus.RUNNING)
            except StaleState:
                logger.info(f"Step {step.position} of build {job.id} is no longer pending")
                return False
            logger.info(f"Executing step {step.position}: {step.name}")

            outcome = self._execute_with_retry(job, step, source, definitions.get(step.position))

            if outcome.succeeded:
                try:
                    self.store.transition_step(step.id, BuildStatus.RUNNING, BuildStatus.SUCCEEDED)
                except StaleState:
                    # Canceled while the executor was busy; cancel already closed the step
                    return False
                if outcome.image_ref:
                    self.store.set_build_image(job.id, outcome.image_ref)
                logger.info(f"Step {step.position} ({step.name}) succeeded")
                continue

            if outcome.status == BuildStatus.CANCELED:
                self.store.cancel_build(job.id)
                return False

            message = f"step '{step.name}' failed: {outcome.error}"
            try:
                self.store.fail_build(job.id, step.id, message)
            except StaleState:
                return False
            logger.error(f"Build {job.id} failed at step {step.position} ({step.name}): {outcome.error}")
            return False

        return True

    def _execute_with_retry(
        self,
        job: BuildJob,
        step: BuildStep,
        source: SourceRef,
        definition: Optional[StepDefinition],
    ) -> StepOutcome:
        writer = self.log_sink.writer(job.id, step.id)

        def attempt(number: int) -> StepOutcome:
            if number > 1:
                writer.write(f"--- retrying step '{step.name}' (attempt {number}) ---\n")
            context = StepContext(
                build_id=job.id,
                step_id=step.id,
                position=step.position,
                name=step.name,
                app_id=job.app_id,
                source=source,
                definition=definition,
                attempt=number,
                should_cancel=lambda: self._cancel_requested(job.id),
            )
            return run_step(self.executor, context, writer.write)

        return run_with_retry(self.retry, attempt, label=f"Build {job.id} step '{step.name}'")

    # ---------- release ----------

    def materialize_release(
        self,
        build_id: int,
        version: str,
        changelog: Optional[str] = None,
    ) -> Release:
        """Create the built release of a succeeded build in one store transaction."""
        job = self.store.get_build(build_id)
        if job.status != BuildStatus.SUCCEEDED:
            raise InvalidInput(f"Build {build_id} is {job.status.value}, only succeeded builds make releases")
        if job.release_id is not None:
            raise InvalidInput(f"Build {build_id} already produced release {job.release_id}")

        try:
            release = self.store.publish_release(
                app_id=job.app_id,
                version=version,
                build_id=build_id,
                source=SourceRef(commit_sha=job.commit_sha, branch=job.branch, tag=job.tag),
                image_ref=job.image_ref,
                changelog=changelog,
                created_by=job.triggered_by,
            )
        except VersionConflict:
            logger.warning(f"Build {build_id} succeeded but release {version} already exists")
            raise

        logger.info(f"Release {version} of app {job.app_id} is built")
        return release

    # ---------- cancel ----------

    def cancel(self, build_id: int) -> BuildJob:
        """Cancel a pending or running build; terminal builds are left as they are."""
        job = self.store.get_build(build_id)
        self._authorize(job.app_id, "build")
        if is_terminal(job.status):
            return job
        return self.store.cancel_build(build_id)
