"""
Deployment backend abstraction.

A deploy is one opaque long-running operation: the backend gets the image,
environment and target, and answers with a single outcome.
"""

from abc import ABC, abstractmethod

from controller.src.models.deploy import DeployOutcome, DeployTarget

class DeployBackend(ABC):
    name: str = "unknown"

    @abstractmethod
    def deploy(self, target: DeployTarget) -> DeployOutcome:
        """Block until the rollout is over. Poll target.should_cancel while waiting."""
        ...

    def cancel(self, target: DeployTarget):
        """Best-effort stop signal. The outcome of deploy() stays authoritative."""
        pass
