"""
Deploy execution models.
"""

from pydantic import BaseModel, Field
from typing import Callable, Optional
from datetime import datetime, timezone

from controller.src.models.status import DeployStatus

class DeployTarget(BaseModel):
    deploy_id: int
    app_id: int
    app_slug: str
    release_version: str
    image_ref: Optional[str] = None
    environment: str
    cluster: Optional[str] = None
    region: Optional[str] = None
    should_cancel: Callable[[], bool] = lambda: False

class DeployOutcome(BaseModel):
    status: DeployStatus
    error: Optional[str] = None
    retryable: bool = False
    pipeline_url: Optional[str] = None
    logs_url: Optional[str] = None

    @classmethod
    def success(cls, **links) -> "DeployOutcome":
        return cls(status=DeployStatus.SUCCEEDED, **links)

    @classmethod
    def failure(cls, message: str, retryable: bool, **links) -> "DeployOutcome":
        return cls(status=DeployStatus.FAILED, error=message, retryable=retryable, **links)

    @classmethod
    def canceled(cls, **links) -> "DeployOutcome":
        return cls(status=DeployStatus.CANCELED, error="canceled", **links)

class DeployRequest(BaseModel):
    """Queue payload asking a worker to run a deploy."""
    deploy_id: int
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
