"""
Kubernetes client initialization and utilities.
"""

from kubernetes import client, config
from kubernetes.client.rest import ApiException
import logging

from controller.src.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_api_client = None
_batch_v1 = None
_core_v1 = None
_apps_v1 = None

def init_k8s_client():
    """Initialize Kubernetes client."""
    global _api_client, _batch_v1, _core_v1, _apps_v1

    try:
        if settings.k8s_in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
        else:
            # Running locally (Docker Desktop, minikube, etc.)
            config.load_kube_config()
            logger.info("Loaded local Kubernetes config")

        _api_client = client.ApiClient()
        _batch_v1 = client.BatchV1Api(_api_client)
        _core_v1 = client.CoreV1Api(_api_client)
        _apps_v1 = client.AppsV1Api(_api_client)

        _core_v1.list_namespace(limit=1)
        logger.info("Kubernetes client initialized successfully")

        return True
    except Exception as e:
        logger.error(f"Failed to initialize Kubernetes client: {e}")
        return False

def get_batch_api() -> client.BatchV1Api:
    """BatchV1 API client for step Jobs."""
    if _batch_v1 is None:
        init_k8s_client()
    return _batch_v1

def get_core_api() -> client.CoreV1Api:
    """CoreV1 API client for pods, logs and namespaces."""
    if _core_v1 is None:
        init_k8s_client()
    return _core_v1

def get_apps_api() -> client.AppsV1Api:
    """AppsV1 API client for app Deployments."""
    if _apps_v1 is None:
        init_k8s_client()
    return _apps_v1

def ensure_namespace(namespace: str = None, core_v1: client.CoreV1Api = None):
    """Create the namespace if it is missing."""
    namespace = namespace or settings.k8s_namespace
    core_v1 = core_v1 or get_core_api()

    try:
        core_v1.read_namespace(name=namespace)
    except ApiException as e:
        if e.status == 404:
            body = client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace))
            core_v1.create_namespace(body=body)
            logger.info(f"Created namespace '{namespace}'")
        else:
            raise

def delete_job(job_name: str, namespace: str = None, batch_v1: client.BatchV1Api = None):
    """Delete a step job and its pods."""
    namespace = namespace or settings.k8s_namespace
    batch_v1 = batch_v1 or get_batch_api()

    try:
        batch_v1.delete_namespaced_job(
            name=job_name,
            namespace=namespace,
            body=client.V1DeleteOptions(propagation_policy="Foreground"),
        )
        logger.info(f"Deleted job {job_name}")
    except ApiException as e:
        if e.status != 404:
            logger.error(f"Failed to delete job {job_name}: {e}")

def is_transient(error: ApiException) -> bool:
    """API server hiccups worth retrying: throttling, timeouts, 5xx."""
    return error.status in (0, 408, 429) or (error.status or 0) >= 500
