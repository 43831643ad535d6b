"""
Drives one deployment attempt from trigger to final report.
"""
import asyncio
import logging
import uuid
import warnings
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..changes.diff_reader import GitDiffReader
from ..changes.resolver import ChangeResolver, ServiceMapper
from ..config.global_config_loader import GlobalConfig, ServiceSettings
from ..config.rules_loader import RulesLoader
from ..core.enums import DeploymentOutcome, PlanSource, ServiceOutcome, Stage
from ..core.errors import (
    ConfigurationError,
    RuntimeCommandError,
    SecretMaterializationWarning,
    StackApplyError,
    StackDeployError,
)
from ..core.models import DeploymentPlan, DeploymentReport, SecretBundle, TriggerRequest
from ..runtime.base import ContainerRuntime
from ..runtime.compose import ComposeRuntime
from ..secrets.materializer import EnvironmentMaterializer
from ..secrets.store import SecretStore, create_secret_store
from .executor import DeploymentExecutor
from .history import DeploymentHistory, LoggingCollector
from .lock import DeploymentLockManager

_STAGE_ORDER = list(Stage)


def new_run_id() -> str:
    """Run ids sort chronologically"""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:8]}"


class Orchestrator:
    """
    Runs lock -> sync -> diff -> resolve -> secrets -> materialize -> apply -> status.

    Any fatal error before apply aborts without touching the running stack.
    A final report is produced on every path.
    """

    def __init__(
        self,
        diff_reader: GitDiffReader,
        resolver: ChangeResolver,
        secret_store: SecretStore,
        materializer: EnvironmentMaterializer,
        executor: DeploymentExecutor,
        runtime: ContainerRuntime,
        lock_manager: DeploymentLockManager,
        history: Optional[DeploymentHistory] = None,
        service_settings: Optional[Dict[str, ServiceSettings]] = None,
        sync_remote: Optional[str] = None,
        sync_branch: str = "main"
    ):
        self.diff_reader = diff_reader
        self.resolver = resolver
        self.secret_store = secret_store
        self.materializer = materializer
        self.executor = executor
        self.runtime = runtime
        self.lock_manager = lock_manager
        self.history = history
        self.service_settings = dict(service_settings or {})
        self.sync_remote = sync_remote
        self.sync_branch = sync_branch
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_global_config(cls, config: GlobalConfig) -> 'Orchestrator':
        """
        Wire every component from the global configuration.

        Raises:
            ConfigurationError: If the rule table or secret store config is invalid
        """
        rules = RulesLoader.load(config.rules_path, config.rules)
        project_dir = config.project_dir()

        return cls(
            diff_reader=GitDiffReader(config.repository.path),
            resolver=ChangeResolver(ServiceMapper(rules)),
            secret_store=create_secret_store(config.secrets),
            materializer=EnvironmentMaterializer(
                base_dir=project_dir,
                backup_retention=config.secrets.backup_retention
            ),
            executor=DeploymentExecutor(settle_delay=config.compose.settle_delay),
            runtime=ComposeRuntime(
                project_dir=project_dir,
                compose_command=config.compose.command,
                compose_files=config.compose.files,
                project_name=config.compose.project_name,
                command_timeout=config.compose.command_timeout
            ),
            lock_manager=DeploymentLockManager(config.lock.path, config.lock.timeout),
            history=DeploymentHistory(config.history.state_dir, config.history.max_reports),
            service_settings=config.services,
            sync_remote=config.repository.remote if config.repository.sync else None,
            sync_branch=config.repository.branch
        )

    async def run(
        self,
        trigger: TriggerRequest,
        cancel_event: Optional[asyncio.Event] = None
    ) -> DeploymentReport:
        """
        Run one deployment attempt.

        Args:
            trigger: Revision pair and/or operator overrides
            cancel_event: Set to stop between per-service steps

        Returns:
            DeploymentReport (always, whatever happened)
        """
        report = DeploymentReport(
            run_id=new_run_id(),
            trigger=trigger,
            started_at=datetime.now(timezone.utc)
        )
        collector = LoggingCollector(self.history) if self.history else None
        if collector:
            collector.start_run(report.run_id)

        self.logger.info(f"=== Deployment {report.run_id} started ===")
        try:
            try:
                await self.lock_manager.acquire()
            except (TimeoutError, OSError) as e:
                self._abort(report, Stage.LOCK, e)
                return report

            try:
                await self._run_stages(report, trigger, cancel_event)
            finally:
                await self.lock_manager.release()
        finally:
            report.finished_at = datetime.now(timezone.utc)
            self._finish(report)
            if collector:
                collector.stop_run()

        return report

    async def _run_stages(
        self,
        report: DeploymentReport,
        trigger: TriggerRequest,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        stage = Stage.SYNC
        try:
            if self.sync_remote and trigger.dry_run:
                self.logger.info("Dry run, not updating the working tree")
            elif self.sync_remote:
                await self.diff_reader.sync(self.sync_remote, self.sync_branch)

            if trigger.has_override():
                stage = Stage.RESOLVE
                plan = ChangeResolver.from_override(trigger.deploy_all, trigger.services)
                self.logger.info(f"Operator override: {plan.describe()}")
                report.current_revision = await self._current_revision_or_none(trigger, report)
            else:
                stage = Stage.DIFF
                previous = trigger.previous_revision
                if previous is None and self.history:
                    previous = self.history.last_deployed_revision()
                change_set = await self.diff_reader.read_changes(previous, trigger.current_revision)
                report.previous_revision = change_set.previous_revision
                report.current_revision = change_set.current_revision
                report.changed_paths = len(change_set)

                stage = Stage.RESOLVE
                plan = self.resolver.resolve(change_set)

            report.plan = plan
            self.logger.info(f"Deployment plan: {plan.describe()}")

            if trigger.dry_run:
                report.outcome = (
                    DeploymentOutcome.NOTHING_TO_DEPLOY if plan.is_noop else DeploymentOutcome.SUCCEEDED
                )
                return

            if plan.is_noop:
                report.result = await self.executor.apply(plan, self.runtime)
                report.outcome = DeploymentOutcome.NOTHING_TO_DEPLOY
                return

            targets = self._materialization_targets(plan)

            stage = Stage.SECRETS
            bundle = SecretBundle()
            if targets:
                keys = set()
                for settings in targets:
                    keys.update(settings.secret_keys)
                bundle = await self.secret_store.fetch(keys)

            stage = Stage.MATERIALIZE
            try:
                report.warnings.extend(self._materialize(bundle, targets))
            finally:
                bundle.clear()

            stage = Stage.APPLY
            report.result = await self.executor.apply(plan, self.runtime, cancel_event)

        except StackApplyError as e:
            report.outcome = DeploymentOutcome.STACK_FAILED
            report.failed_stage = Stage.APPLY
            report.error = str(e)
            self.logger.critical(
                f"FULL-STACK DEPLOYMENT FAILED during {e.step}: {e.reason}. "
                + ("The stack may be left STOPPED." if e.stack_stopped else "The stack was not stopped.")
            )
            await self._collect_status(report)
            return
        except StackDeployError as e:
            self._abort(report, stage, e)
            return
        except Exception as e:
            self.logger.exception(f"Unexpected error in stage {stage.value}")
            if _STAGE_ORDER.index(stage) < _STAGE_ORDER.index(Stage.APPLY):
                self._abort(report, stage, e)
            else:
                report.outcome = DeploymentOutcome.STACK_FAILED
                report.failed_stage = stage
                report.error = f"{type(e).__name__}: {e}"
            return

        result = report.result
        skipped = [r.service for r in result.services if r.outcome == ServiceOutcome.SKIPPED]
        if skipped:
            report.warnings.append(f"Deployment cancelled; skipped: {', '.join(skipped)}")

        if result.has_failures() or skipped:
            report.outcome = DeploymentOutcome.PARTIALLY_FAILED
        else:
            report.outcome = DeploymentOutcome.SUCCEEDED

        await self._collect_status(report)

    async def _current_revision_or_none(self, trigger: TriggerRequest, report: DeploymentReport) -> Optional[str]:
        """Overrides don't need git; the revision is only resolved for the record"""
        try:
            return await self.diff_reader.resolve_revision(trigger.current_revision or "HEAD")
        except ConfigurationError as e:
            report.warnings.append(f"Could not resolve current revision: {e}")
            return None

    def _materialization_targets(self, plan: DeploymentPlan) -> List[ServiceSettings]:
        return [
            settings
            for name, settings in sorted(self.service_settings.items())
            if settings.materializes_secrets and plan.in_scope(name)
        ]

    def _materialize(self, bundle: SecretBundle, targets: List[ServiceSettings]) -> List[str]:
        """Materialize secrets for each target; returns the non-fatal warnings"""
        messages = []
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", SecretMaterializationWarning)
            for settings in targets:
                self.materializer.materialize(bundle, settings)
        for warning in caught:
            if issubclass(warning.category, SecretMaterializationWarning):
                messages.append(str(warning.message))
            else:
                warnings.warn_explicit(
                    warning.message, warning.category, warning.filename, warning.lineno
                )
        return messages

    async def _collect_status(self, report: DeploymentReport) -> None:
        try:
            report.status = await self.runtime.list_status()
        except RuntimeCommandError as e:
            message = f"Could not list running services: {e}"
            self.logger.warning(message)
            report.warnings.append(message)

    def _abort(self, report: DeploymentReport, stage: Stage, error: Exception) -> None:
        report.outcome = DeploymentOutcome.ABORTED
        report.failed_stage = stage
        report.error = str(error)
        self.logger.error(f"Deployment aborted at stage '{stage.value}' before touching the stack: {error}")

    def _finish(self, report: DeploymentReport) -> None:
        self.logger.info(
            f"=== Deployment {report.run_id} finished: "
            f"{report.outcome.value if report.outcome else 'unknown'} in {report.elapsed:.1f}s ==="
        )
        if not self.history:
            return

        try:
            if self._should_record_revision(report):
                self.history.record_deployed_revision(report.current_revision, report.run_id)
            self.history.save_report(report)
        except OSError as e:
            self.logger.error(f"Failed to save deployment report {report.run_id}: {e}")

    @staticmethod
    def _should_record_revision(report: DeploymentReport) -> bool:
        """
        Advance the last deployed revision only after a clean, real deployment
        of the whole diff. A service-list override deployed only part of it.
        """
        if report.trigger.dry_run or not report.current_revision or report.plan is None:
            return False
        if report.plan.source == PlanSource.OVERRIDE_SERVICES:
            return False
        return report.outcome in (DeploymentOutcome.SUCCEEDED, DeploymentOutcome.NOTHING_TO_DEPLOY)
