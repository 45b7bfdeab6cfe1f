"""
Step executor abstraction.

An executor's ``execute`` is a generator: it yields log chunks as the step
produces them and returns a StepOutcome when the step is over. Nothing is
buffered, so chunks reach the log sink even if the worker dies mid-step.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Generator, Optional

from controller.src.errors import RetryableError
from controller.src.models.step import StepContext, StepOutcome

logger = logging.getLogger(__name__)

StepRun = Generator[str, None, StepOutcome]

# A step publishes the image it built by printing this marker
IMAGE_REF_MARKER = "PAASTEL_IMAGE_REF="

def find_image_ref(chunk: str) -> Optional[str]:
    for line in chunk.splitlines():
        line = line.strip()
        if line.startswith(IMAGE_REF_MARKER):
            return line[len(IMAGE_REF_MARKER):].strip() or None
    return None

class StepExecutor(ABC):
    runner_type: str = "unknown"

    @abstractmethod
    def execute(self, context: StepContext) -> StepRun:
        ...

def run_step(
    executor: StepExecutor,
    context: StepContext,
    on_chunk: Callable[[str], None],
) -> StepOutcome:
    """
    Drive one executor run to its outcome, handing each chunk to `on_chunk`.

    Exceptions escaping the executor become failures: RetryableError is
    retryable, anything else is not.
    """
    run = executor.execute(context)
    image_ref = None
    try:
        while True:
            try:
                chunk = next(run)
            except StopIteration as stop:
                outcome = stop.value
                break
            image_ref = find_image_ref(chunk) or image_ref
            on_chunk(chunk)
    except RetryableError as e:
        logger.warning(f"Step {context.name} of build {context.build_id} hit a transient error: {e}")
        return StepOutcome.failure(str(e), retryable=True)
    except Exception as e:
        logger.exception(f"Step {context.name} of build {context.build_id} raised")
        return StepOutcome.failure(str(e) or type(e).__name__, retryable=False)

    if outcome is None:
        outcome = StepOutcome.success()
    if outcome.succeeded and outcome.image_ref is None and image_ref:
        outcome = outcome.model_copy(update={"image_ref": image_ref})
    return outcome
