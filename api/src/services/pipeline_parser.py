"""
Pipeline YAML parser and validator.
"""

import yaml
from typing import List, Dict, Any, Optional

from controller.src.models.step import StepDefinition

DEFAULT_STEP_TIMEOUT = 600

class PipelineConfigError(Exception):
    """Raised when pipeline configuration is invalid."""
    pass

def parse_pipeline_config(yaml_content: str) -> Dict[str, Any]:
    """Parse pipeline YAML configuration from string."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise PipelineConfigError(f"Invalid YAML: {e}")

    return validate_config(config)

def parse_pipeline_dict(config: Dict[str, Any]) -> Dict[str, Any]:
    """Validate pipeline configuration from dict."""
    return validate_config(config)

def steps_from_names(names: List[str]) -> List[StepDefinition]:
    """Bare step definitions; the runner decides what each name means."""
    return [StepDefinition(name=name) for name in names]

def validate_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Validate pipeline configuration structure."""
    if not config:
        raise PipelineConfigError("Empty pipeline configuration")

    if not isinstance(config, dict):
        raise PipelineConfigError("Pipeline configuration must be a dictionary")

    name = config.get("name", "Unnamed Pipeline")
    if not isinstance(name, str):
        raise PipelineConfigError("Pipeline 'name' must be a string")

    env = _validate_env(config.get("env", {}), "Pipeline")

    if "steps" not in config:
        raise PipelineConfigError("Pipeline must have 'steps' defined")

    steps = config["steps"]
    if not isinstance(steps, list):
        raise PipelineConfigError("Pipeline 'steps' must be a list")

    if len(steps) == 0:
        raise PipelineConfigError("Pipeline must have at least one step")

    validated_steps = [validate_step(step, i, env) for i, step in enumerate(steps)]

    return {
        "name": name,
        "steps": validated_steps,
        "env": env,
    }

def validate_step(step: Any, index: int, pipeline_env: Optional[Dict[str, str]] = None) -> StepDefinition:
    """
    Validate a single pipeline step.

    A step is either a bare name (``- build``) or a mapping with a name and
    optional image, commands, env and timeout. Step env overrides pipeline env.
    """
    if isinstance(step, str):
        step = {"name": step}

    if not isinstance(step, dict):
        raise PipelineConfigError(f"Step {index} must be a dictionary or a name")

    if "name" not in step:
        raise PipelineConfigError(f"Step {index} missing 'name'")

    if not isinstance(step["name"], str) or not step["name"].strip():
        raise PipelineConfigError(f"Step {index} 'name' must be a non-empty string")

    image = step.get("image")
    if image is not None and not isinstance(image, str):
        raise PipelineConfigError(f"Step {index} 'image' must be a string")

    commands = step.get("commands", [])
    if not isinstance(commands, list):
        raise PipelineConfigError(f"Step {index} 'commands' must be a list")

    for j, cmd in enumerate(commands):
        if not isinstance(cmd, str):
            raise PipelineConfigError(f"Step {index} command {j} must be a string")

    if image is None and commands:
        raise PipelineConfigError(f"Step {index} has commands but no 'image'")

    timeout = step.get("timeout", DEFAULT_STEP_TIMEOUT)
    if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
        raise PipelineConfigError(f"Step {index} 'timeout' must be a positive integer")

    env = dict(pipeline_env or {})
    env.update(_validate_env(step.get("env", {}), f"Step {index}"))

    return StepDefinition(
        name=step["name"].strip(),
        image=image,
        commands=commands,
        env=env,
        timeout=timeout,
    )

def _validate_env(env: Any, where: str) -> Dict[str, str]:
    if env is None:
        return {}
    if not isinstance(env, dict):
        raise PipelineConfigError(f"{where} 'env' must be a mapping")
    return {str(k): str(v) for k, v in env.items()}
