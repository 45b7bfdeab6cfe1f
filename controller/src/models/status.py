"""
Status enums and their transition tables.

Every status write goes through the store's guarded update, which checks
the requested move against these tables before touching the row.
"""

from enum import Enum
from typing import Dict, FrozenSet

class BuildStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

class BuildTrigger(str, Enum):
    MANUAL = "manual"
    GIT_PUSH = "git_push"
    API = "api"

class ReleaseStatus(str, Enum):
    PENDING = "pending"
    BUILT = "built"
    FAILED = "failed"

class DeployStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

class OrgRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    BILLING = "billing"

class TeamRole(str, Enum):
    MEMBER = "member"
    MAINTAINER = "maintainer"
    LEAD = "lead"

class AppRole(str, Enum):
    OWNER = "owner"
    MAINTAINER = "maintainer"
    DEPLOYER = "deployer"
    VIEWER = "viewer"

# Build steps share the build status enum
BUILD_TRANSITIONS: Dict[BuildStatus, FrozenSet[BuildStatus]] = {
    BuildStatus.PENDING: frozenset({BuildStatus.RUNNING, BuildStatus.CANCELED}),
    BuildStatus.RUNNING: frozenset(
        {BuildStatus.SUCCEEDED, BuildStatus.FAILED, BuildStatus.CANCELED}
    ),
    BuildStatus.SUCCEEDED: frozenset(),
    BuildStatus.FAILED: frozenset(),
    BuildStatus.CANCELED: frozenset(),
}

DEPLOY_TRANSITIONS: Dict[DeployStatus, FrozenSet[DeployStatus]] = {
    DeployStatus.PENDING: frozenset({DeployStatus.RUNNING, DeployStatus.CANCELED}),
    DeployStatus.RUNNING: frozenset(
        {DeployStatus.SUCCEEDED, DeployStatus.FAILED, DeployStatus.CANCELED}
    ),
    DeployStatus.SUCCEEDED: frozenset(),
    DeployStatus.FAILED: frozenset(),
    DeployStatus.CANCELED: frozenset(),
}

RELEASE_TRANSITIONS: Dict[ReleaseStatus, FrozenSet[ReleaseStatus]] = {
    ReleaseStatus.PENDING: frozenset({ReleaseStatus.BUILT, ReleaseStatus.FAILED}),
    ReleaseStatus.BUILT: frozenset(),
    ReleaseStatus.FAILED: frozenset(),
}

_TABLES = {
    BuildStatus: BUILD_TRANSITIONS,
    DeployStatus: DEPLOY_TRANSITIONS,
    ReleaseStatus: RELEASE_TRANSITIONS,
}

def transitions_for(status_type) -> Dict:
    return _TABLES[status_type]

def is_terminal(status) -> bool:
    """True for statuses with no outgoing transitions."""
    return not _TABLES[type(status)][status]
