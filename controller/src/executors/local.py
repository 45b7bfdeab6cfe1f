"""
Local process executor - runs step commands in a subprocess on the worker.
"""

import logging
import os
import subprocess
import time

from controller.src.executors.base import StepExecutor, StepRun
from controller.src.models.step import StepContext, StepOutcome

logger = logging.getLogger(__name__)

class LocalStepExecutor(StepExecutor):
    runner_type = "local"

    def __init__(self, workdir: str = None, shell: str = "/bin/sh"):
        self.workdir = workdir
        self.shell = shell

    def execute(self, context: StepContext) -> StepRun:
        definition = context.definition
        if definition is None or not definition.commands:
            return StepOutcome.failure(f"No commands defined for step '{context.name}'", retryable=False)

        env = {
            **os.environ,
            "PAASTEL_BUILD_ID": str(context.build_id),
            "PAASTEL_STEP_POSITION": str(context.position),
            "PAASTEL_STEP_NAME": context.name,
            **definition.env,
        }
        if context.source.commit_sha:
            env["PAASTEL_COMMIT_SHA"] = context.source.commit_sha

        process = subprocess.Popen(
            [self.shell, "-c", " && ".join(definition.commands)],
            cwd=self.workdir,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        deadline = time.monotonic() + definition.timeout
        logger.info(f"Started local process {process.pid} for step {context.name}")

        try:
            for line in process.stdout:
                yield line
                if context.should_cancel():
                    process.terminate()
                    process.wait(timeout=10)
                    return StepOutcome.canceled()
                if time.monotonic() > deadline:
                    process.kill()
                    process.wait()
                    return StepOutcome.failure(
                        f"Step timed out after {definition.timeout}s", retryable=False
                    )
            returncode = process.wait(timeout=max(deadline - time.monotonic(), 1))
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            return StepOutcome.failure(f"Step timed out after {definition.timeout}s", retryable=False)
        finally:
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stdout:
                process.stdout.close()

        if returncode != 0:
            return StepOutcome.failure(f"Command exited with status {returncode}", retryable=False)
        return StepOutcome.success()
