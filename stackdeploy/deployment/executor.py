"""
Applies a deployment plan to the running stack.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..core.enums import ServiceOutcome
from ..core.errors import FetchError, RuntimeCommandError, ServiceApplyError, StackApplyError
from ..core.models import DeploymentPlan, DeploymentResult, ServiceResult
from ..runtime.base import ContainerRuntime


class DeploymentExecutor:
    """
    The only component that mutates the running stack.

    Subset plans are applied one service at a time with a settle delay in
    between; a failing service is recorded and the rest still run. A failure
    in any global step of an All plan raises StackApplyError.
    """

    def __init__(
        self,
        settle_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize executor.

        Args:
            settle_delay: Seconds to wait after each service starts
            sleep: Coroutine used for the settle delay
        """
        self.settle_delay = settle_delay
        self._sleep = sleep
        self.logger = logging.getLogger(__name__)

    async def apply(
        self,
        plan: DeploymentPlan,
        runtime: ContainerRuntime,
        cancel_event: Optional[asyncio.Event] = None
    ) -> DeploymentResult:
        """
        Apply a plan.

        Args:
            plan: Resolved deployment plan
            runtime: Container runtime to act on
            cancel_event: When set, remaining subset services are skipped

        Returns:
            DeploymentResult with one entry per service

        Raises:
            StackApplyError: If a global step of an All plan fails
        """
        if plan.is_noop:
            self.logger.info("No services to deploy")
            return DeploymentResult(plan=plan)

        if plan.is_all:
            return await self._apply_all(plan, runtime)

        return await self._apply_subset(plan, runtime, cancel_event)

    async def _apply_all(self, plan: DeploymentPlan, runtime: ContainerRuntime) -> DeploymentResult:
        result = DeploymentResult(plan=plan)
        start = time.monotonic()
        self.logger.info("Deploying all services...")

        try:
            catalog = await runtime.list_services()
        except RuntimeCommandError as e:
            raise StackApplyError("service listing", str(e), stack_stopped=False) from e

        try:
            await runtime.stop_all()
        except RuntimeCommandError as e:
            # down may have stopped part of the stack before failing
            raise StackApplyError("stop", str(e), stack_stopped=True) from e

        try:
            await runtime.pull_all()
        except FetchError as e:
            message = f"Pulling images failed, building locally: {e}"
            self.logger.warning(message)
            result.warnings.append(message)

        try:
            await runtime.build_and_start_all()
        except RuntimeCommandError as e:
            raise StackApplyError("build-and-start", str(e), stack_stopped=True) from e

        duration = time.monotonic() - start
        for service in sorted(catalog):
            result.add(ServiceResult(service=service, outcome=ServiceOutcome.SUCCEEDED, duration=duration))

        self.logger.info(f"All {len(catalog)} services deployed")
        return result

    async def _apply_subset(
        self,
        plan: DeploymentPlan,
        runtime: ContainerRuntime,
        cancel_event: Optional[asyncio.Event]
    ) -> DeploymentResult:
        result = DeploymentResult(plan=plan)
        services = sorted(plan.services)
        self.logger.info(f"Deploying specific services: {' '.join(services)}")

        for service in services:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.warning(f"Deployment cancelled, skipping {service}")
                result.add(ServiceResult(service=service, outcome=ServiceOutcome.SKIPPED, reason="cancelled"))
                continue

            start = time.monotonic()
            try:
                await self._apply_service(service, runtime, result)
            except ServiceApplyError as e:
                self.logger.error(str(e))
                result.add(ServiceResult(
                    service=service,
                    outcome=ServiceOutcome.FAILED,
                    reason=e.reason,
                    duration=time.monotonic() - start
                ))
                continue

            self.logger.info(f"Service {service} deployed")
            if self.settle_delay > 0:
                # Let the service settle before the next rebuild hits the host
                await self._sleep(self.settle_delay)
            result.add(ServiceResult(
                service=service,
                outcome=ServiceOutcome.SUCCEEDED,
                duration=time.monotonic() - start
            ))

        return result

    async def _apply_service(self, service: str, runtime: ContainerRuntime, result: DeploymentResult) -> None:
        self.logger.info(f"Deploying service: {service}")
        try:
            await runtime.pull_image(service)
        except FetchError:
            message = f"No pre-built image for {service}, will build locally"
            self.logger.info(message)
            result.warnings.append(message)

        try:
            await runtime.build_and_start(service, no_deps=True)
        except RuntimeCommandError as e:
            raise ServiceApplyError(service, str(e)) from e
        except OSError as e:
            raise ServiceApplyError(service, f"{type(e).__name__}: {e}") from e
