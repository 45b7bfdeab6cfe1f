"""Tests for the queue worker and retry policy."""

import asyncio
import json
import warnings
from unittest.mock import MagicMock

from controller.src.errors import BuildNotFound, VersionConflict
from controller.src.models.status import BuildStatus
from controller.src.models.step import StepOutcome
from controller.src.services import RetryConfig, run_with_retry
from controller.src.worker import BUILD_QUEUE, DEPLOY_QUEUE, Worker

def make_worker(redis_client):
    return Worker(redis_client, builds=MagicMock(), deploys=MagicMock(), poll_timeout=1)

def test_build_message_runs_build(redis_client):
    worker = make_worker(redis_client)

    worker.handle(
        BUILD_QUEUE,
        {
            "build_id": 5,
            "steps": [{"name": "build", "image": "node:18", "commands": ["npm run build"]}],
            "version": "v2",
        },
    )

    args, kwargs = worker.builds.run.call_args
    assert args == (5,)
    assert kwargs["version"] == "v2"
    assert kwargs["definitions"][0].image == "node:18"

def test_deploy_message_runs_deploy(redis_client):
    worker = make_worker(redis_client)

    worker.handle(DEPLOY_QUEUE, {"deploy_id": 9})

    worker.deploys.run.assert_called_once_with(9)
    worker.builds.run.assert_not_called()

def test_pipeline_errors_do_not_escape(redis_client):
    worker = make_worker(redis_client)
    worker.builds.run.side_effect = VersionConflict(1, "v2", 5)
    worker.handle(BUILD_QUEUE, {"build_id": 5})

    worker.builds.run.side_effect = BuildNotFound("Build 6 not found")
    worker.handle(BUILD_QUEUE, {"build_id": 6})

def test_unknown_queue_is_ignored(redis_client):
    worker = make_worker(redis_client)

    worker.handle("paastel:other", {"build_id": 1})

    worker.builds.run.assert_not_called()
    worker.deploys.run.assert_not_called()

def test_next_message_reads_either_queue(redis_client):
    worker = make_worker(redis_client)
    redis_client.lpush(DEPLOY_QUEUE, json.dumps({"deploy_id": 3}))

    queue, payload = asyncio.run(worker.next_message())

    assert queue == DEPLOY_QUEUE
    assert payload == {"deploy_id": 3}

def test_run_dispatches_until_stopped(redis_client):
    worker = make_worker(redis_client)
    redis_client.lpush(BUILD_QUEUE, json.dumps({"build_id": 1}))
    worker.builds.run.side_effect = lambda *args, **kwargs: worker.stop()

    asyncio.run(asyncio.wait_for(worker.run(), timeout=10))

    worker.builds.run.assert_called_once()

def test_retry_stops_on_success():
    attempts = []

    def attempt(number):
        attempts.append(number)
        if number < 2:
            return StepOutcome.failure("flaky", retryable=True)
        return StepOutcome.success()

    outcome = run_with_retry(RetryConfig(max_attempts=5, base_delay=0, max_delay=0), attempt)

    assert outcome.succeeded
    assert attempts == [1, 2]

def test_retry_returns_last_failure():
    attempts = []

    def attempt(number):
        attempts.append(number)
        return StepOutcome.failure(f"flaky {number}", retryable=True)

    outcome = run_with_retry(RetryConfig(max_attempts=3, base_delay=0, max_delay=0), attempt)

    assert outcome.status == BuildStatus.FAILED
    assert outcome.error == "flaky 3"
    assert attempts == [1, 2, 3]

def test_permanent_failure_is_not_retried():
    attempts = []

    def attempt(number):
        attempts.append(number)
        return StepOutcome.failure("syntax error", retryable=False)

    outcome = run_with_retry(RetryConfig(max_attempts=3, base_delay=0, max_delay=0), attempt)

    assert outcome.error == "syntax error"
    assert attempts == [1]

def test_retry_backoff_raises_no_warnings():
    outcomes = [StepOutcome.failure("registry busy", retryable=True), StepOutcome.success()]

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        outcome = run_with_retry(
            RetryConfig(max_attempts=2, base_delay=0, max_delay=0),
            lambda number: outcomes[number - 1],
        )

    assert outcome.succeeded
