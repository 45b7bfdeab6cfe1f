"""
Deploy endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from api.src.dependencies import get_deploy_coordinator, get_pipeline_store
from api.src.models.release import DeployResponse
from controller.src.models.status import DeployStatus
from controller.src.services import DeployCoordinator, PipelineStore

router = APIRouter(tags=["deploys"])

@router.get("/apps/{app_id}/deploys", response_model=List[DeployResponse])
def list_deploys(
    app_id: int,
    environment: Optional[str] = None,
    status: Optional[DeployStatus] = None,
    store: PipelineStore = Depends(get_pipeline_store),
):
    store.get_app(app_id)
    statuses = [status] if status is not None else None
    return store.list_deploys(app_id, environment=environment, statuses=statuses)

@router.get("/deploys/{deploy_id}", response_model=DeployResponse)
def get_deploy(deploy_id: int, store: PipelineStore = Depends(get_pipeline_store)):
    return store.get_deploy(deploy_id)

@router.post("/deploys/{deploy_id}/cancel", response_model=DeployResponse)
def cancel_deploy(deploy_id: int, coordinator: DeployCoordinator = Depends(get_deploy_coordinator)):
    """
    A pending deploy is canceled at once. A running one is signalled and
    keeps its status until the worker running it stops the backend.
    """
    return coordinator.cancel(deploy_id)
