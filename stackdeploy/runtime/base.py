from abc import ABC, abstractmethod
from typing import List

from ..core.models import ServiceStatus


class ContainerRuntime(ABC):
    """
    Operations the orchestrator needs from the container runtime.

    Mutating operations raise RuntimeCommandError on failure. Image pulls
    raise FetchError instead, which callers treat as recoverable.
    """

    @abstractmethod
    async def stop_all(self) -> None:
        """Stop and remove every managed service"""

    @abstractmethod
    async def pull_image(self, service: str) -> None:
        """Pull the prebuilt image for one service"""

    @abstractmethod
    async def pull_all(self) -> None:
        """Pull prebuilt images for every service"""

    @abstractmethod
    async def build_and_start(self, service: str, no_deps: bool = True) -> None:
        """Build and (re)start one service; no_deps leaves its dependencies alone"""

    @abstractmethod
    async def build_and_start_all(self) -> None:
        """Build and start the whole stack"""

    @abstractmethod
    async def list_services(self) -> List[str]:
        """Service names known to the runtime (the service catalog)"""

    @abstractmethod
    async def list_status(self) -> List[ServiceStatus]:
        """Current state of each service container"""
