from .global_config_loader import (
    GlobalConfig,
    RepositoryConfig,
    ComposeConfig,
    ServiceSettings,
    SecretsConfig,
    LockConfig,
    HistoryConfig,
    LoggingConfig,
    load_global_config,
)
from .rules_loader import RulesLoader, ALL_SENTINEL

__all__ = [
    'GlobalConfig',
    'RepositoryConfig',
    'ComposeConfig',
    'ServiceSettings',
    'SecretsConfig',
    'LockConfig',
    'HistoryConfig',
    'LoggingConfig',
    'load_global_config',
    'RulesLoader',
    'ALL_SENTINEL',
]
