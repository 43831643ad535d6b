"""
StackDeploy - change-driven selective deployment for Docker Compose stacks

Main modules:
- core: Data models, enums and the error taxonomy
- changes: Git diff reading and path-to-service resolution
- secrets: Secret stores and env file materialization
- runtime: Container runtime abstraction (docker-compose)
- deployment: Executor, orchestrator, host lock and history
- config: Global configuration and rule table loading
"""

from .core.models import ChangeSet, DeploymentPlan, DeploymentReport, TriggerRequest
from .changes.diff_reader import GitDiffReader
from .changes.resolver import ChangeResolver, ServiceMapper
from .config.global_config_loader import GlobalConfig, load_global_config
from .config.rules_loader import RulesLoader
from .deployment.executor import DeploymentExecutor
from .deployment.orchestrator import Orchestrator

__version__ = "1.0.0"
__all__ = [
    'ChangeSet',
    'DeploymentPlan',
    'DeploymentReport',
    'TriggerRequest',
    'GitDiffReader',
    'ChangeResolver',
    'ServiceMapper',
    'GlobalConfig',
    'load_global_config',
    'RulesLoader',
    'DeploymentExecutor',
    'Orchestrator',
]
