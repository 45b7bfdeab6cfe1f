"""
External CI executor - delegates a step to a CI service over HTTP.

The CI service is expected to expose:
    POST /steps                      -> {"id": ..., "url": ...}
    GET  /steps/{id}                 -> {"status": ..., "error": ..., "retryable": ..., "image_ref": ...}
    GET  /steps/{id}/logs?offset=N   -> {"content": ..., "offset": M}
    POST /steps/{id}/cancel
"""

import logging
import time

import httpx

from controller.src.errors import RetryableError
from controller.src.executors.base import StepExecutor, StepRun
from controller.src.models.step import StepContext, StepOutcome

logger = logging.getLogger(__name__)

TERMINAL = {"succeeded", "failed", "canceled"}

def raise_for_transient(response: httpx.Response):
    if response.status_code == 429 or response.status_code >= 500:
        raise RetryableError(f"CI service returned {response.status_code}")
    response.raise_for_status()

class ExternalCIExecutor(StepExecutor):
    runner_type = "external"

    def __init__(self, base_url: str, client: httpx.Client = None, poll_interval: float = 2.0):
        self.client = client or httpx.Client(base_url=base_url, timeout=30.0)
        self.poll_interval = poll_interval

    def _call(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise RetryableError(f"CI service unreachable: {e}")
        raise_for_transient(response)
        return response

    def execute(self, context: StepContext) -> StepRun:
        definition = context.definition
        payload = {
            "build_id": context.build_id,
            "step": context.name,
            "position": context.position,
            "attempt": context.attempt,
            "commit_sha": context.source.commit_sha,
            "branch": context.source.branch,
            "tag": context.source.tag,
            "definition": definition.model_dump() if definition else None,
        }
        try:
            created = self._call("POST", "/steps", json=payload).json()
        except httpx.HTTPStatusError as e:
            return StepOutcome.failure(f"CI service rejected step: {e.response.status_code}", retryable=False)

        external_id = created["id"]
        logger.info(f"Delegated step {context.name} of build {context.build_id} as {external_id}")
        if created.get("url"):
            yield f"External CI job: {created['url']}\n"

        offset = 0
        while True:
            logs = self._call("GET", f"/steps/{external_id}/logs", params={"offset": offset}).json()
            if logs.get("content"):
                yield logs["content"]
            offset = logs.get("offset", offset)

            state = self._call("GET", f"/steps/{external_id}").json()
            status = state.get("status")
            if status in TERMINAL:
                # Drain whatever was logged after the last poll
                tail = self._call("GET", f"/steps/{external_id}/logs", params={"offset": offset}).json()
                if tail.get("content"):
                    yield tail["content"]
                break

            if context.should_cancel():
                self._call("POST", f"/steps/{external_id}/cancel")
                return StepOutcome.canceled()
            time.sleep(self.poll_interval)

        if status == "succeeded":
            return StepOutcome.success(state.get("image_ref"))
        if status == "canceled":
            return StepOutcome.canceled()
        return StepOutcome.failure(
            state.get("error") or "External CI step failed",
            retryable=bool(state.get("retryable", False)),
        )
