"""
Step execution models.
"""

from pydantic import BaseModel, Field
from typing import Callable, List, Optional, Dict
from datetime import datetime, timezone

from controller.src.models.status import BuildStatus

class SourceRef(BaseModel):
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None

class RunnerInfo(BaseModel):
    name: str
    type: str

class StepDefinition(BaseModel):
    """What to run for a step. Only the name is persisted."""
    name: str
    image: Optional[str] = None
    commands: List[str] = []
    env: Dict[str, str] = {}
    timeout: int = 600

class StepContext(BaseModel):
    build_id: int
    step_id: int
    position: int
    name: str
    app_id: int
    source: SourceRef = SourceRef()
    definition: Optional[StepDefinition] = None
    attempt: int = 1
    should_cancel: Callable[[], bool] = lambda: False

class StepOutcome(BaseModel):
    status: BuildStatus
    image_ref: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    @classmethod
    def success(cls, image_ref: Optional[str] = None) -> "StepOutcome":
        return cls(status=BuildStatus.SUCCEEDED, image_ref=image_ref)

    @classmethod
    def failure(cls, message: str, retryable: bool) -> "StepOutcome":
        return cls(status=BuildStatus.FAILED, error=message, retryable=retryable)

    @classmethod
    def canceled(cls) -> "StepOutcome":
        return cls(status=BuildStatus.CANCELED, error="canceled")

    @property
    def succeeded(self) -> bool:
        return self.status == BuildStatus.SUCCEEDED

class BuildRequest(BaseModel):
    """Queue payload asking a worker to run a build."""
    build_id: int
    steps: List[StepDefinition] = []
    version: Optional[str] = None
    changelog: Optional[str] = None
    queued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
