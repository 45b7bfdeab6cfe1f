from controller.src.services.pipeline_store import PipelineStore, get_store, ORPHANED_MESSAGE
from controller.src.services.log_sink import LogSink, ChunkWriter, get_log_sink
from controller.src.services.signals import Signals, get_signals
from controller.src.services.retry import RetryConfig, run_with_retry
from controller.src.services.build_coordinator import BuildCoordinator
from controller.src.services.deploy_coordinator import DeployCoordinator, serialize_environment
from controller.src.services.reconciler import Reconciler, ReconcileReport

__all__ = [
    "PipelineStore",
    "get_store",
    "ORPHANED_MESSAGE",
    "LogSink",
    "ChunkWriter",
    "get_log_sink",
    "Signals",
    "get_signals",
    "RetryConfig",
    "run_with_retry",
    "BuildCoordinator",
    "DeployCoordinator",
    "serialize_environment",
    "Reconciler",
    "ReconcileReport",
]
