"""Tests for the Kubernetes step executor, deploy backend and client helpers."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from controller.src.backends.external import ExternalDeployBackend
from controller.src.backends.kubernetes import KubernetesDeployBackend
from controller.src.errors import RetryableError
from controller.src.executors.base import run_step
from controller.src.executors.kubernetes import KubernetesStepExecutor
from controller.src.k8s.client import delete_job, ensure_namespace, is_transient
from controller.src.k8s.job_builder import build_deployment
from controller.src.models.deploy import DeployTarget
from controller.src.models.status import BuildStatus, DeployStatus
from controller.src.models.step import StepContext, StepDefinition

def make_target(**overrides):
    values = dict(
        deploy_id=5,
        app_id=1,
        app_slug="web",
        release_version="v1",
        image_ref="registry/web:1",
        environment="production",
    )
    values.update(overrides)
    return DeployTarget(**values)

def rolled_out(replicas=1):
    deployment = build_deployment("web", 5, "v1", "registry/web:1", "production", replicas=replicas)
    deployment.status = client.V1DeploymentStatus(updated_replicas=replicas, available_replicas=replicas)
    return deployment

def test_is_transient():
    assert is_transient(ApiException(status=503))
    assert is_transient(ApiException(status=429))
    assert not is_transient(ApiException(status=404))
    assert not is_transient(ApiException(status=422))

def test_ensure_namespace_creates_missing():
    core_v1 = MagicMock()
    core_v1.read_namespace.side_effect = ApiException(status=404)

    ensure_namespace("paastel-production", core_v1)

    body = core_v1.create_namespace.call_args.kwargs["body"]
    assert body.metadata.name == "paastel-production"

def test_ensure_namespace_existing():
    core_v1 = MagicMock()

    ensure_namespace("paastel", core_v1)

    core_v1.create_namespace.assert_not_called()

def test_delete_job_ignores_missing():
    batch_v1 = MagicMock()
    batch_v1.delete_namespaced_job.side_effect = ApiException(status=404)

    delete_job("ps-b1-s1-a1-build", "paastel", batch_v1)

def test_backend_creates_deployment_and_waits():
    apps_v1 = MagicMock()
    apps_v1.read_namespaced_deployment.side_effect = [ApiException(status=404), rolled_out()]
    backend = KubernetesDeployBackend(apps_v1, MagicMock(), timeout=30, poll_interval=0)

    outcome = backend.deploy(make_target())

    assert outcome.status == DeployStatus.SUCCEEDED
    created = apps_v1.create_namespaced_deployment.call_args.kwargs
    assert created["namespace"] == "paastel-production"
    assert created["body"].spec.template.spec.containers[0].image == "registry/web:1"

def test_backend_replaces_existing_deployment():
    apps_v1 = MagicMock()
    apps_v1.read_namespaced_deployment.side_effect = [rolled_out(), rolled_out()]
    backend = KubernetesDeployBackend(apps_v1, MagicMock(), timeout=30, poll_interval=0)

    assert backend.deploy(make_target()).status == DeployStatus.SUCCEEDED
    apps_v1.replace_namespaced_deployment.assert_called_once()
    apps_v1.create_namespaced_deployment.assert_not_called()

def test_backend_without_image_fails():
    backend = KubernetesDeployBackend(MagicMock(), MagicMock(), timeout=30, poll_interval=0)

    outcome = backend.deploy(make_target(image_ref=None))

    assert outcome.status == DeployStatus.FAILED
    assert not outcome.retryable

def test_backend_api_outage_is_retryable():
    apps_v1 = MagicMock()
    apps_v1.read_namespaced_deployment.side_effect = ApiException(status=503)
    backend = KubernetesDeployBackend(apps_v1, MagicMock(), timeout=30, poll_interval=0)

    with pytest.raises(RetryableError):
        backend.deploy(make_target())

def test_backend_cancel_pauses_rollout():
    progressing = build_deployment("web", 5, "v1", "registry/web:1", "production")
    apps_v1 = MagicMock()
    apps_v1.read_namespaced_deployment.side_effect = [progressing, progressing]
    backend = KubernetesDeployBackend(apps_v1, MagicMock(), timeout=30, poll_interval=0)

    outcome = backend.deploy(make_target(should_cancel=lambda: True))

    assert outcome.status == DeployStatus.CANCELED
    assert apps_v1.patch_namespaced_deployment.call_args.kwargs["body"] == {"spec": {"paused": True}}

def step_context(definition):
    return StepContext(
        build_id=3,
        step_id=9,
        position=1,
        name="build",
        app_id=1,
        definition=definition,
    )

def running_pod():
    return SimpleNamespace(
        items=[SimpleNamespace(metadata=SimpleNamespace(name="pod-1"), status=SimpleNamespace(phase="Running"))]
    )

def test_k8s_executor_runs_job():
    batch_v1 = MagicMock()
    batch_v1.read_namespaced_job.return_value = client.V1Job(status=client.V1JobStatus(succeeded=1))
    core_v1 = MagicMock()
    core_v1.list_namespaced_pod.return_value = running_pod()
    core_v1.read_namespaced_pod_log.return_value.stream.return_value = [b"compiling\n", b"done\n"]
    executor = KubernetesStepExecutor(batch_v1, core_v1, namespace="builds", poll_interval=0)

    chunks = []
    outcome = run_step(
        executor,
        step_context(StepDefinition(name="build", image="node:18", commands=["npm run build"])),
        chunks.append,
    )

    assert outcome.status == BuildStatus.SUCCEEDED
    assert chunks == ["compiling\n", "done\n"]
    job = batch_v1.create_namespaced_job.call_args.kwargs["body"]
    assert job.metadata.name == "ps-b3-s1-a1-build"
    assert job.metadata.namespace == "builds"

def test_k8s_executor_failed_job():
    batch_v1 = MagicMock()
    batch_v1.read_namespaced_job.return_value = client.V1Job(status=client.V1JobStatus(failed=1))
    core_v1 = MagicMock()
    core_v1.list_namespaced_pod.return_value = running_pod()
    core_v1.read_namespaced_pod_log.return_value.stream.return_value = [b"error TS2304\n"]
    executor = KubernetesStepExecutor(batch_v1, core_v1, namespace="builds", poll_interval=0)

    outcome = run_step(
        executor,
        step_context(StepDefinition(name="build", image="node:18", commands=["npm run build"])),
        lambda chunk: None,
    )

    assert outcome.status == BuildStatus.FAILED
    assert not outcome.retryable

def test_k8s_executor_recreates_leftover_job():
    batch_v1 = MagicMock()
    batch_v1.create_namespaced_job.side_effect = [ApiException(status=409), None]
    batch_v1.read_namespaced_job.return_value = client.V1Job(status=client.V1JobStatus(succeeded=1))
    core_v1 = MagicMock()
    core_v1.list_namespaced_pod.return_value = running_pod()
    core_v1.read_namespaced_pod_log.return_value.stream.return_value = []
    executor = KubernetesStepExecutor(batch_v1, core_v1, namespace="builds", poll_interval=0)

    outcome = run_step(
        executor,
        step_context(StepDefinition(name="build", image="node:18", commands=["make"])),
        lambda chunk: None,
    )

    assert outcome.succeeded
    batch_v1.delete_namespaced_job.assert_called_once()
    assert batch_v1.create_namespaced_job.call_count == 2

def test_k8s_executor_needs_image():
    executor = KubernetesStepExecutor(MagicMock(), MagicMock(), namespace="builds", poll_interval=0)

    outcome = run_step(executor, step_context(StepDefinition(name="build")), lambda chunk: None)

    assert outcome.status == BuildStatus.FAILED
    executor.batch_v1.create_namespaced_job.assert_not_called()

def test_external_backend():
    def handler(request):
        if request.method == "POST" and request.url.path == "/deploys":
            return httpx.Response(201, json={"url": "https://cd.example/runs/5"})
        if request.url.path == "/deploys/5":
            return httpx.Response(200, json={"status": "succeeded"})
        return httpx.Response(404)

    http = httpx.Client(base_url="http://cd.example", transport=httpx.MockTransport(handler))
    backend = ExternalDeployBackend("http://cd.example", client=http, poll_interval=0)

    outcome = backend.deploy(make_target())

    assert outcome.status == DeployStatus.SUCCEEDED
    assert outcome.pipeline_url == "https://cd.example/runs/5"

def test_external_backend_reports_failure():
    def handler(request):
        if request.method == "POST":
            return httpx.Response(201, json={})
        return httpx.Response(200, json={"status": "failed", "error": "quota exceeded"})

    http = httpx.Client(base_url="http://cd.example", transport=httpx.MockTransport(handler))
    backend = ExternalDeployBackend("http://cd.example", client=http, poll_interval=0)

    outcome = backend.deploy(make_target())

    assert outcome.status == DeployStatus.FAILED
    assert outcome.error == "quota exceeded"
