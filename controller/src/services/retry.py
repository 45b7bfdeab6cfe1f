"""
Retry of retryable step/deploy outcomes with tenacity.

Outcomes are values, not exceptions, so retries key off the result:
a failed outcome flagged ``retryable`` is tried again with exponential
backoff until ``max_attempts`` is used up, then the last outcome is
returned as-is.
"""

import logging
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import (
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from controller.src.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

@dataclass
class RetryConfig:
    """max_attempts is the TOTAL number of tries, not the number of retries."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1, base_delay=0.0, max_delay=0.0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_attempts=max(1, settings.step_max_attempts),
            base_delay=max(0.0, settings.retry_base_delay),
            max_delay=max(0.0, settings.retry_max_delay),
        )

def _is_retryable(outcome) -> bool:
    return outcome.error is not None and outcome.retryable

def run_with_retry(config: RetryConfig, attempt_fn: Callable[[int], T], label: str = "") -> T:
    """Call attempt_fn(attempt_number) until it stops returning retryable failures."""
    attempts = {"n": 0}

    def attempt():
        attempts["n"] += 1
        return attempt_fn(attempts["n"])

    def log_retry(retry_state):
        outcome = retry_state.outcome.result()
        logger.warning(
            f"{label} attempt {retry_state.attempt_number}/{config.max_attempts} "
            f"failed with a retryable error: {outcome.error}"
        )

    retrying = Retrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(multiplier=config.base_delay, max=config.max_delay)
        + wait_random(0, config.base_delay),
        retry=retry_if_result(_is_retryable),
        before_sleep=log_retry,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        reraise=True,
    )
    return retrying(attempt)
