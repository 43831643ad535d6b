from enum import Enum


class PlanKind(str, Enum):
    ALL = "all"
    SUBSET = "subset"
    NOOP = "noop"


class PlanSource(str, Enum):
    """Where a deployment plan came from"""
    DIFF = "diff"
    OVERRIDE_ALL = "override_all"
    OVERRIDE_SERVICES = "override_services"


class ServiceOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class DeploymentOutcome(str, Enum):
    """Overall outcome of one deployment attempt"""
    NOTHING_TO_DEPLOY = "nothing_to_deploy"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    # All-mode apply failed; the stack may be left stopped
    STACK_FAILED = "stack_failed"
    # Aborted before the running stack was touched
    ABORTED = "aborted"


class Stage(str, Enum):
    """Pipeline stages, in execution order"""
    LOCK = "lock"
    SYNC = "sync"
    DIFF = "diff"
    RESOLVE = "resolve"
    SECRETS = "secrets"
    MATERIALIZE = "materialize"
    APPLY = "apply"
    STATUS = "status"
