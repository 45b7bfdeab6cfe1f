from api.src.services.github import (
    verify_signature,
    clone_repository,
    fetch_pipeline_config,
    parse_webhook_payload,
    repo_url_candidates,
    cleanup_repo,
    RepositoryError,
)
from api.src.services.pipeline_parser import (
    parse_pipeline_config,
    parse_pipeline_dict,
    steps_from_names,
    PipelineConfigError,
)
from api.src.services.queue import (
    get_redis_client,
    enqueue_build,
    enqueue_deploy,
    get_queue_lengths,
)

__all__ = [
    "verify_signature",
    "clone_repository",
    "fetch_pipeline_config",
    "parse_webhook_payload",
    "repo_url_candidates",
    "cleanup_repo",
    "RepositoryError",
    "parse_pipeline_config",
    "parse_pipeline_dict",
    "steps_from_names",
    "PipelineConfigError",
    "get_redis_client",
    "enqueue_build",
    "enqueue_deploy",
    "get_queue_lengths",
]
