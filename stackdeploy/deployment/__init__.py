"""
Applying plans to the stack and running whole deployment attempts.
"""

from .executor import DeploymentExecutor
from .history import DeploymentHistory, LoggingCollector, RunLogsHandler
from .lock import DeploymentLockManager
from .orchestrator import Orchestrator, new_run_id

__all__ = [
    'DeploymentExecutor',
    'DeploymentHistory',
    'LoggingCollector',
    'RunLogsHandler',
    'DeploymentLockManager',
    'Orchestrator',
    'new_run_id',
]
