"""
FastAPI dependencies wiring the API onto the controller's store and coordinators.

The API only creates and cancels work; builds and deploys are run by the
controller workers, so the coordinators here carry no executor or backend.
"""

from fastapi import Depends

from api.src.config import Settings, get_settings
from controller.src.services import (
    BuildCoordinator,
    DeployCoordinator,
    LogSink,
    PipelineStore,
    Signals,
    get_log_sink,
    get_signals,
    get_store,
    serialize_environment,
)

def get_pipeline_store() -> PipelineStore:
    return get_store()

def get_sink() -> LogSink:
    return get_log_sink()

def get_signal_client() -> Signals:
    return get_signals()

def get_build_coordinator(
    store: PipelineStore = Depends(get_pipeline_store),
    sink: LogSink = Depends(get_sink),
) -> BuildCoordinator:
    return BuildCoordinator(store, sink)

def get_deploy_coordinator(
    store: PipelineStore = Depends(get_pipeline_store),
    signals: Signals = Depends(get_signal_client),
    settings: Settings = Depends(get_settings),
) -> DeployCoordinator:
    admission = serialize_environment if settings.serialize_deploys else None
    return DeployCoordinator(store, signals=signals, admission=admission)
