from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from controller.src.models.status import DeployStatus, ReleaseStatus

class ReleaseResponse(BaseModel):
    id: int
    app_id: int
    version: str
    status: ReleaseStatus
    commit_sha: Optional[str] = None
    branch: Optional[str] = None
    tag: Optional[str] = None
    image_ref: Optional[str] = None
    changelog: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True

class DeployCreate(BaseModel):
    environment: str
    target_cluster: Optional[str] = None
    target_region: Optional[str] = None
    triggered_by: Optional[int] = None

class DeployResponse(BaseModel):
    id: int
    app_id: int
    release_id: int
    environment: str
    status: DeployStatus
    triggered_by: Optional[int] = None
    target_cluster: Optional[str] = None
    target_region: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    pipeline_url: Optional[str] = None
    logs_url: Optional[str] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
