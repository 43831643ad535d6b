"""Pytest configuration and fixtures for StackDeploy tests."""

import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from stackdeploy.config.global_config_loader import ServiceSettings
from stackdeploy.core.errors import FetchError, RuntimeCommandError
from stackdeploy.core.models import ServiceStatus
from stackdeploy.runtime.base import ContainerRuntime

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class FakeRuntime(ContainerRuntime):
    """
    In-memory runtime that records every call.

    failing_services: services whose build_and_start fails
    failing_steps: global steps that fail ('list', 'stop', 'pull_all', 'up_all', 'status')
    prebuilt: services that have a pullable image (None means all of them)
    """

    def __init__(
        self,
        catalog: Optional[List[str]] = None,
        failing_services: Optional[List[str]] = None,
        failing_steps: Optional[List[str]] = None,
        prebuilt: Optional[List[str]] = None
    ):
        self.catalog = list(catalog or ["auth-service", "cart-service", "catalog-service", "nginx", "postgres"])
        self.failing_services = set(failing_services or [])
        self.failing_steps = set(failing_steps or [])
        self.prebuilt = set(prebuilt) if prebuilt is not None else None
        self.calls: List[tuple] = []
        self.running: Dict[str, int] = {}

    def _fail(self, command: str):
        raise RuntimeCommandError(command, 1, f"error running {command}")

    async def stop_all(self) -> None:
        self.calls.append(("stop_all",))
        if "stop" in self.failing_steps:
            self._fail("down")
        self.running.clear()

    async def pull_image(self, service: str) -> None:
        self.calls.append(("pull_image", service))
        if self.prebuilt is not None and service not in self.prebuilt:
            raise FetchError(f"No pre-built image for {service}")

    async def pull_all(self) -> None:
        self.calls.append(("pull_all",))
        if "pull_all" in self.failing_steps:
            raise FetchError("registry unavailable")

    async def build_and_start(self, service: str, no_deps: bool = True) -> None:
        self.calls.append(("build_and_start", service, no_deps))
        if service in self.failing_services:
            self._fail(f"up -d --build --no-deps {service}")
        self.running[service] = self.running.get(service, 0) + 1

    async def build_and_start_all(self) -> None:
        self.calls.append(("build_and_start_all",))
        if "up_all" in self.failing_steps:
            self._fail("up -d --build")
        for service in self.catalog:
            self.running[service] = self.running.get(service, 0) + 1

    async def list_services(self) -> List[str]:
        self.calls.append(("list_services",))
        if "list" in self.failing_steps:
            self._fail("config --services")
        return list(self.catalog)

    async def list_status(self) -> List[ServiceStatus]:
        self.calls.append(("list_status",))
        if "status" in self.failing_steps:
            self._fail("ps")
        return [
            ServiceStatus(service=name, state="running" if name in self.running else "exited")
            for name in sorted(self.catalog)
        ]

    def mutating_calls(self) -> List[tuple]:
        return [c for c in self.calls if c[0] not in ("list_services", "list_status")]


@pytest.fixture
def fake_runtime():
    """Runtime double with the default service catalog"""
    return FakeRuntime()


@pytest.fixture
def sample_rules():
    """Raw rule table in the shape found in YAML"""
    return [
        {'prefix': 'services/auth', 'services': ['auth-service']},
        {'prefix': 'services/cart', 'services': ['cart-service']},
        {'prefix': 'services/catalog', 'services': ['catalog-service']},
        {'prefix': 'services/catalog/migrations', 'services': ['catalog-service', 'postgres']},
        {'prefix': 'nginx', 'services': ['nginx']},
        {'prefix': 'docker-compose.yml', 'services': 'ALL'},
        {'prefix': 'docs', 'services': None},
    ]


@pytest.fixture
def service_settings(tmp_path):
    """Secret-bearing service settings with env files under tmp_path"""
    return {
        'auth-service': ServiceSettings(
            name='auth-service',
            env_file=str(tmp_path / 'services' / 'auth' / '.env'),
            secret_keys=['JWT_SECRET', 'DB_PASSWORD']
        ),
        'cart-service': ServiceSettings(name='cart-service'),
    }


@pytest.fixture
def make_runtime():
    """Factory for runtime doubles with custom catalogs and failures"""
    return FakeRuntime
