from .enums import PlanKind, PlanSource, ServiceOutcome, DeploymentOutcome, Stage
from .errors import (
    StackDeployError,
    ConfigurationError,
    FetchError,
    RuntimeCommandError,
    ServiceApplyError,
    StackApplyError,
    SecretStoreError,
    SecretMaterializationError,
    SecretMaterializationWarning,
)
from .models import (
    ChangeSet,
    ServiceRule,
    DeploymentPlan,
    SecretBundle,
    ServiceResult,
    ServiceStatus,
    DeploymentResult,
    DeploymentReport,
    TriggerRequest,
)

__all__ = [
    'PlanKind',
    'PlanSource',
    'ServiceOutcome',
    'DeploymentOutcome',
    'Stage',
    'StackDeployError',
    'ConfigurationError',
    'FetchError',
    'RuntimeCommandError',
    'ServiceApplyError',
    'StackApplyError',
    'SecretStoreError',
    'SecretMaterializationError',
    'SecretMaterializationWarning',
    'ChangeSet',
    'ServiceRule',
    'DeploymentPlan',
    'SecretBundle',
    'ServiceResult',
    'ServiceStatus',
    'DeploymentResult',
    'DeploymentReport',
    'TriggerRequest',
]
