"""
Secret fetching and env file materialization.
"""

from .store import SecretStore, EnvSecretStore, FileSecretStore, HttpSecretStore, create_secret_store
from .materializer import EnvironmentMaterializer, format_env_value

__all__ = [
    'SecretStore',
    'EnvSecretStore',
    'FileSecretStore',
    'HttpSecretStore',
    'create_secret_store',
    'EnvironmentMaterializer',
    'format_env_value',
]
