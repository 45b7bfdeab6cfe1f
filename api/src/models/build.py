from pydantic import BaseModel
from typing import Optional, List, Union
from datetime import datetime

from controller.src.models.status import BuildStatus, BuildTrigger
from controller.src.models.step import StepDefinition

class StepResponse(BaseModel):
    id: int
    position: int
    name: str
    status: BuildStatus
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True

class BuildCreate(BaseModel):
    """
    Manual or API trigger. Give either `steps` (names or full definitions)
    or `pipeline` (pipeline YAML); with neither, the default steps run.
    """
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None
    trigger: BuildTrigger = BuildTrigger.API
    steps: Optional[List[Union[str, StepDefinition]]] = None
    pipeline: Optional[str] = None
    version: Optional[str] = None
    changelog: Optional[str] = None
    triggered_by: Optional[int] = None

class BuildResponse(BaseModel):
    id: int
    app_id: int
    release_id: Optional[int] = None
    status: BuildStatus
    trigger: BuildTrigger
    triggered_by: Optional[int] = None
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None
    image_ref: Optional[str] = None
    runner_name: Optional[str] = None
    runner_type: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None
    steps: List[StepResponse] = []

    class Config:
        from_attributes = True

class LogChunkResponse(BaseModel):
    step_id: Optional[int] = None
    chunk_index: int
    content: str
    created_at: datetime

    class Config:
        from_attributes = True

class ReleaseCreate(BaseModel):
    version: str
    changelog: Optional[str] = None
