import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from ..core.errors import ConfigurationError


@dataclass
class RepositoryConfig:
    """Tracked source tree the stack is deployed from"""
    path: str = "/opt/ecommerce-app"
    remote: str = "origin"
    branch: str = "main"
    sync: bool = False  # fetch + hard reset to remote/branch before diffing


@dataclass
class ComposeConfig:
    """Container runtime configuration"""
    command: List[str] = field(default_factory=lambda: ["docker-compose"])
    files: List[str] = field(default_factory=list)
    project_name: Optional[str] = None
    project_dir: Optional[str] = None  # defaults to repository.path
    settle_delay: float = 5.0
    command_timeout: float = 1800.0

    def __post_init__(self):
        # Allow "docker compose" as a plain string in YAML
        if isinstance(self.command, str):
            self.command = self.command.split()


@dataclass
class ServiceSettings:
    """Per-service runtime settings used by secret materialization"""
    name: str
    env_file: Optional[str] = None
    secret_keys: List[str] = field(default_factory=list)

    @property
    def materializes_secrets(self) -> bool:
        return bool(self.secret_keys)


@dataclass
class SecretsConfig:
    """Secret store definition"""
    type: str = "env"  # 'env' | 'file' | 'http'
    # env store
    env_prefix: str = ""
    # file store
    path: Optional[str] = None
    # http store
    url: Optional[str] = None
    token_env: Optional[str] = None  # name of the env var holding the bearer token
    data_path: Optional[str] = None  # e.g. "data.data" for Vault KV v2
    timeout: float = 10.0
    # env file snapshots kept per service
    backup_retention: int = 5


@dataclass
class LockConfig:
    """Host-level single-writer lock"""
    path: str = "./data/stackdeploy.lock"
    timeout: int = 60


@dataclass
class HistoryConfig:
    """Deployment history storage"""
    state_dir: str = "./data/deployments"
    max_reports: int = 50


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class GlobalConfig:
    """Global configuration for the deployment orchestrator"""
    repository: RepositoryConfig
    compose: ComposeConfig
    secrets: SecretsConfig
    lock: LockConfig
    history: HistoryConfig
    logging: LoggingConfig
    services: Dict[str, ServiceSettings] = field(default_factory=dict)
    rules: List[Dict[str, Any]] = field(default_factory=list)
    rules_path: Optional[str] = None
    source_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GlobalConfig':
        """Create GlobalConfig from dictionary"""
        try:
            services = {}
            for name, settings in (data.get('services') or {}).items():
                settings = dict(settings or {})
                settings.pop('name', None)
                services[name] = ServiceSettings(name=name, **settings)

            return cls(
                repository=RepositoryConfig(**(data.get('repository') or {})),
                compose=ComposeConfig(**(data.get('compose') or {})),
                secrets=SecretsConfig(**(data.get('secrets') or {})),
                lock=LockConfig(**(data.get('lock') or {})),
                history=HistoryConfig(**(data.get('history') or {})),
                logging=LoggingConfig(**(data.get('logging') or {})),
                services=services,
                rules=list(data.get('rules') or []),
                rules_path=data.get('rules_path'),
            )
        except TypeError as e:
            # Unknown keys in one of the sections
            raise ConfigurationError(f"Invalid global configuration: {e}") from e

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'GlobalConfig':
        """Load GlobalConfig from YAML file"""
        path = Path(yaml_path)
        if not path.exists():
            raise ConfigurationError(f"Global config file not found: {yaml_path}")

        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse {yaml_path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"Global config must be a mapping: {yaml_path}")

        config = cls.from_dict(data or {})
        config.source_path = str(path)
        # Relative rules_path is resolved against the config file location
        if config.rules_path and not Path(config.rules_path).is_absolute():
            config.rules_path = str(path.parent / config.rules_path)
        return config

    @classmethod
    def default(cls) -> 'GlobalConfig':
        """Return default configuration"""
        return cls(
            repository=RepositoryConfig(),
            compose=ComposeConfig(),
            secrets=SecretsConfig(),
            lock=LockConfig(),
            history=HistoryConfig(),
            logging=LoggingConfig(),
        )

    def project_dir(self) -> str:
        return self.compose.project_dir or self.repository.path


def load_global_config(config_path: Optional[str] = None) -> GlobalConfig:
    """
    Load global configuration from YAML file.
    If no path provided, looks for stackdeploy.yaml in standard locations.
    """
    if config_path:
        return GlobalConfig.from_yaml(config_path)

    # Try standard locations
    search_paths = [
        Path("./stackdeploy.yaml"),
        Path("./config/stackdeploy.yaml"),
        Path("/etc/stackdeploy/stackdeploy.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return GlobalConfig.from_yaml(str(path))

    # Return default if no config found
    return GlobalConfig.default()

