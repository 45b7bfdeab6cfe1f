"""
Kubernetes executor - runs each build step as a Kubernetes Job.
"""

import logging
import time

from kubernetes.client.rest import ApiException

from controller.src.config import get_settings
from controller.src.errors import RetryableError
from controller.src.executors.base import StepExecutor, StepRun
from controller.src.k8s import (
    build_step_job,
    delete_job,
    get_batch_api,
    get_core_api,
    get_job_status,
    is_transient,
)
from controller.src.models.step import StepContext, StepOutcome

logger = logging.getLogger(__name__)
settings = get_settings()

class KubernetesStepExecutor(StepExecutor):
    runner_type = "k8s"

    def __init__(self, batch_v1=None, core_v1=None, namespace: str = None, poll_interval: float = 2.0):
        self.batch_v1 = batch_v1 or get_batch_api()
        self.core_v1 = core_v1 or get_core_api()
        self.namespace = namespace or settings.k8s_namespace
        self.poll_interval = poll_interval

    def execute(self, context: StepContext) -> StepRun:
        definition = context.definition
        if definition is None or not definition.image or not definition.commands:
            return StepOutcome.failure(
                f"Step '{context.name}' needs an image and commands", retryable=False
            )

        env = dict(definition.env)
        if context.source.commit_sha:
            env["PAASTEL_COMMIT_SHA"] = context.source.commit_sha
        if context.source.branch:
            env["PAASTEL_BRANCH"] = context.source.branch

        job = build_step_job(
            build_id=context.build_id,
            position=context.position,
            step_name=context.name,
            image=definition.image,
            commands=definition.commands,
            attempt=context.attempt,
            env_vars=env,
            timeout=definition.timeout,
            namespace=self.namespace,
        )
        job_name = job.metadata.name
        self._create_job(job)

        deadline = time.monotonic() + definition.timeout

        pod_name = yield from self._wait_for_pod(job_name, context, deadline)
        if pod_name is None:
            status = self._job_status(job_name)
            if context.should_cancel():
                delete_job(job_name, self.namespace, self.batch_v1)
                return StepOutcome.canceled()
            if status == "failed":
                return StepOutcome.failure(f"Job {job_name} failed before its pod started", retryable=False)
            delete_job(job_name, self.namespace, self.batch_v1)
            return StepOutcome.failure(f"Job {job_name} timed out after {definition.timeout}s", retryable=False)

        yield from self._stream_logs(pod_name)

        return self._wait_for_job(job_name, context, deadline, definition.timeout)

    def _create_job(self, job):
        job_name = job.metadata.name
        logger.info(f"Creating job {job_name}")
        try:
            self.batch_v1.create_namespaced_job(namespace=self.namespace, body=job)
        except ApiException as e:
            if e.status == 409:
                # Left over from a crashed worker; start clean
                logger.warning(f"Job {job_name} already exists, recreating")
                delete_job(job_name, self.namespace, self.batch_v1)
                time.sleep(self.poll_interval)
                self.batch_v1.create_namespaced_job(namespace=self.namespace, body=job)
            elif is_transient(e):
                raise RetryableError(f"Kubernetes API unavailable: {e.reason}")
            else:
                raise

    def _job_status(self, job_name: str) -> str:
        try:
            job = self.batch_v1.read_namespaced_job(name=job_name, namespace=self.namespace)
        except ApiException as e:
            if is_transient(e):
                logger.error(f"Error checking job status: {e}")
                return "pending"
            raise
        return get_job_status(job)

    def _wait_for_pod(self, job_name: str, context: StepContext, deadline: float):
        """Wait until the job's pod has left Pending. Returns its name or None."""
        announced = False
        while time.monotonic() < deadline and not context.should_cancel():
            try:
                pods = self.core_v1.list_namespaced_pod(
                    namespace=self.namespace,
                    label_selector=f"job-name={job_name}",
                )
            except ApiException as e:
                if not is_transient(e):
                    raise
                pods = None

            if pods and pods.items:
                pod = pods.items[0]
                phase = pod.status.phase if pod.status else None
                if phase and phase != "Pending":
                    return pod.metadata.name
            if self._job_status(job_name) == "failed":
                return None
            if not announced:
                yield f"Waiting for pod of job {job_name}...\n"
                announced = True
            time.sleep(self.poll_interval)
        return None

    def _stream_logs(self, pod_name: str):
        """Follow pod logs until the container exits."""
        try:
            response = self.core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=self.namespace,
                follow=True,
                _preload_content=False,
            )
            for data in response.stream():
                yield data.decode("utf-8", errors="replace")
        except ApiException as e:
            yield f"Error streaming logs: {e.reason}\n"

    def _wait_for_job(self, job_name: str, context: StepContext, deadline: float, timeout: int) -> StepOutcome:
        while True:
            status = self._job_status(job_name)
            if status == "succeeded":
                return StepOutcome.success()
            if status == "failed":
                return StepOutcome.failure(f"Job {job_name} failed", retryable=False)
            if context.should_cancel():
                delete_job(job_name, self.namespace, self.batch_v1)
                return StepOutcome.canceled()
            if time.monotonic() > deadline:
                logger.error(f"Job {job_name} timed out after {timeout}s")
                delete_job(job_name, self.namespace, self.batch_v1)
                return StepOutcome.failure(f"Job {job_name} timed out after {timeout}s", retryable=False)
            time.sleep(self.poll_interval)
