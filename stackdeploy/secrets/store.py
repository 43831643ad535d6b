"""
Read-only secret stores.
"""
import asyncio
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import aiohttp
import yaml

from ..config.global_config_loader import SecretsConfig
from ..core.errors import ConfigurationError, SecretStoreError
from ..core.models import SecretBundle


class SecretStore(ABC):
    """Supplies secret values for one deployment attempt"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    @abstractmethod
    async def fetch(self, keys: Iterable[str]) -> SecretBundle:
        """
        Fetch the requested keys.

        Keys the store does not hold are left out of the bundle.

        Raises:
            SecretStoreError: If the store cannot be read
        """

    def _bundle(self, keys: Iterable[str], values: Mapping[str, Any]) -> SecretBundle:
        wanted = set(keys)
        found = {k: str(values[k]) for k in wanted if k in values and values[k] is not None}
        missing = wanted - set(found)
        if missing:
            self.logger.info(f"Secret store has no value for: {', '.join(sorted(missing))}")
        return SecretBundle(found)


class EnvSecretStore(SecretStore):
    """Secrets from process environment variables, optionally prefixed"""

    def __init__(self, prefix: str = "", environ: Optional[Mapping[str, str]] = None):
        super().__init__()
        self.prefix = prefix
        self.environ = environ if environ is not None else os.environ

    async def fetch(self, keys: Iterable[str]) -> SecretBundle:
        keys = set(keys)
        values = {
            key: self.environ[self.prefix + key]
            for key in keys
            if self.prefix + key in self.environ
        }
        return self._bundle(keys, values)


class FileSecretStore(SecretStore):
    """Secrets from a YAML mapping file kept outside version control"""

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)

    async def fetch(self, keys: Iterable[str]) -> SecretBundle:
        if not self.path.exists():
            raise SecretStoreError(f"Secrets file not found: {self.path}")

        try:
            with open(self.path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SecretStoreError(f"Failed to read secrets file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SecretStoreError(f"Secrets file must contain a mapping: {self.path}")

        return self._bundle(keys, data)


class HttpSecretStore(SecretStore):
    """
    Secrets from an HTTP endpoint returning a JSON document.

    `data_path` is a dotted path into the document where the key/value
    mapping lives (for Vault KV v2 that is 'data.data').
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        data_path: Optional[str] = None,
        timeout: float = 10.0
    ):
        super().__init__()
        self.url = url
        self.token = token
        self.data_path = data_path
        self.timeout = timeout

    async def fetch(self, keys: Iterable[str]) -> SecretBundle:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.url, headers=headers) as response:
                    if response.status != 200:
                        raise SecretStoreError(
                            f"Secret store returned HTTP {response.status} for {self.url}"
                        )
                    document = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise SecretStoreError(f"Secret store timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise SecretStoreError(f"Secret store request failed: {e}") from e

        return self._bundle(keys, self._extract(document))

    def _extract(self, document: Any) -> Dict[str, Any]:
        data = document
        if self.data_path:
            for part in self.data_path.split('.'):
                if not isinstance(data, dict) or part not in data:
                    raise SecretStoreError(f"Secret store response has no '{self.data_path}'")
                data = data[part]
        if not isinstance(data, dict):
            raise SecretStoreError("Secret store response is not a key/value mapping")
        return data


def create_secret_store(settings: SecretsConfig) -> SecretStore:
    """Create the configured secret store"""
    if settings.type == 'env':
        return EnvSecretStore(prefix=settings.env_prefix)

    if settings.type == 'file':
        if not settings.path:
            raise ConfigurationError("secrets.path is required for the file secret store")
        return FileSecretStore(settings.path)

    if settings.type == 'http':
        if not settings.url:
            raise ConfigurationError("secrets.url is required for the http secret store")
        token = os.environ.get(settings.token_env) if settings.token_env else None
        return HttpSecretStore(
            url=settings.url,
            token=token,
            data_path=settings.data_path,
            timeout=settings.timeout
        )

    raise ConfigurationError(f"Unsupported secret store type: {settings.type}")
