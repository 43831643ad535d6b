"""
Models for the deployment domain.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from .enums import DeploymentOutcome, PlanKind, PlanSource, ServiceOutcome, Stage


@dataclass(frozen=True)
class ChangeSet:
    """Distinct paths changed between two revisions, in diff order"""
    paths: Tuple[str, ...] = ()
    previous_revision: Optional[str] = None
    current_revision: Optional[str] = None
    initial: bool = False

    def __post_init__(self):
        # Drop duplicates keeping first occurrence; frozen so go through object.__setattr__
        object.__setattr__(self, 'paths', tuple(dict.fromkeys(p for p in self.paths if p)))

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths)

    def is_empty(self) -> bool:
        return not self.paths


@dataclass(frozen=True)
class ServiceRule:
    """Maps a path prefix to services, or to the redeploy-everything sentinel"""
    prefix: str
    services: FrozenSet[str] = frozenset()
    deploy_all: bool = False

    @staticmethod
    def normalize(path: str) -> str:
        """Strip leading './' and '/' so rules and diff paths compare equal"""
        while path.startswith('./'):
            path = path[2:]
        return path.lstrip('/')

    def matches(self, path: str) -> bool:
        """
        Check if a (normalized) path falls under this rule.

        A prefix matches the path itself or anything below it as a directory.
        Prefixes ending in '/' only match below.
        """
        if self.prefix.endswith('/'):
            return path.startswith(self.prefix)
        return path == self.prefix or path.startswith(self.prefix + '/')

    def describe(self) -> str:
        if self.deploy_all:
            return f"{self.prefix} -> ALL"
        if not self.services:
            return f"{self.prefix} -> (nothing)"
        return f"{self.prefix} -> {', '.join(sorted(self.services))}"


@dataclass(frozen=True)
class DeploymentPlan:
    """Resolved decision of what to redeploy"""
    kind: PlanKind
    services: FrozenSet[str] = frozenset()
    source: PlanSource = PlanSource.DIFF
    reason: Optional[str] = None

    @classmethod
    def all(cls, source: PlanSource = PlanSource.DIFF, reason: Optional[str] = None) -> 'DeploymentPlan':
        return cls(kind=PlanKind.ALL, source=source, reason=reason)

    @classmethod
    def subset(
        cls,
        services: Iterable[str],
        source: PlanSource = PlanSource.DIFF,
        reason: Optional[str] = None
    ) -> 'DeploymentPlan':
        names = frozenset(services)
        if not names:
            raise ValueError("A subset plan needs at least one service; use DeploymentPlan.noop()")
        return cls(kind=PlanKind.SUBSET, services=names, source=source, reason=reason)

    @classmethod
    def noop(cls, reason: Optional[str] = None, source: PlanSource = PlanSource.DIFF) -> 'DeploymentPlan':
        return cls(kind=PlanKind.NOOP, source=source, reason=reason)

    @property
    def is_all(self) -> bool:
        return self.kind == PlanKind.ALL

    @property
    def is_noop(self) -> bool:
        return self.kind == PlanKind.NOOP

    def in_scope(self, service: str) -> bool:
        """Whether the given service is touched by this plan"""
        if self.kind == PlanKind.ALL:
            return True
        return service in self.services

    def describe(self) -> str:
        if self.kind == PlanKind.ALL:
            return "ALL services"
        if self.kind == PlanKind.NOOP:
            return f"nothing ({self.reason})" if self.reason else "nothing"
        return ", ".join(sorted(self.services))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'services': sorted(self.services),
            'source': self.source.value,
            'reason': self.reason,
        }


class SecretBundle(Mapping[str, str]):
    """
    Request-scoped secret values keyed by secret name.

    Values never show up in repr/str so a bundle can't leak through logging.
    """

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = dict(values or {})

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SecretBundle(keys={sorted(self._values)})"

    __str__ = __repr__

    def subset(self, keys: Iterable[str]) -> 'SecretBundle':
        return SecretBundle({k: self._values[k] for k in keys if k in self._values})

    def clear(self) -> None:
        """Discard all values once materialization is done"""
        self._values.clear()


@dataclass
class ServiceResult:
    """Outcome of applying a single service"""
    service: str
    outcome: ServiceOutcome
    reason: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'service': self.service,
            'outcome': self.outcome.value,
            'reason': self.reason,
            'duration': round(self.duration, 3),
        }


@dataclass
class ServiceStatus:
    """One row of the running stack's status table"""
    service: str
    state: str

    def to_dict(self) -> Dict[str, Any]:
        return {'service': self.service, 'state': self.state}


@dataclass
class DeploymentResult:
    """Per-service outcomes of applying a plan, plus the plan echo"""
    plan: DeploymentPlan
    services: List[ServiceResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add(self, result: ServiceResult) -> None:
        self.services.append(result)

    def by_outcome(self, outcome: ServiceOutcome) -> List[ServiceResult]:
        return [r for r in self.services if r.outcome == outcome]

    @property
    def succeeded(self) -> List[ServiceResult]:
        return self.by_outcome(ServiceOutcome.SUCCEEDED)

    @property
    def failed(self) -> List[ServiceResult]:
        return self.by_outcome(ServiceOutcome.FAILED)

    @property
    def skipped(self) -> List[ServiceResult]:
        return self.by_outcome(ServiceOutcome.SKIPPED)

    def has_failures(self) -> bool:
        return bool(self.failed)

    def get(self, service: str) -> Optional[ServiceResult]:
        for result in self.services:
            if result.service == service:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan': self.plan.to_dict(),
            'services': [r.to_dict() for r in self.services],
            'warnings': list(self.warnings),
        }


@dataclass
class TriggerRequest:
    """A single deployment trigger: a revision pair and/or operator overrides"""
    previous_revision: Optional[str] = None
    current_revision: Optional[str] = None
    deploy_all: bool = False
    services: List[str] = field(default_factory=list)
    dry_run: bool = False

    def has_override(self) -> bool:
        return self.deploy_all or any(s.strip() for s in self.services)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'previous_revision': self.previous_revision,
            'current_revision': self.current_revision,
            'deploy_all': self.deploy_all,
            'services': list(self.services),
            'dry_run': self.dry_run,
        }


@dataclass
class DeploymentReport:
    """Final summary of one deployment attempt"""
    run_id: str
    trigger: TriggerRequest
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcome: Optional[DeploymentOutcome] = None
    plan: Optional[DeploymentPlan] = None
    result: Optional[DeploymentResult] = None
    failed_stage: Optional[Stage] = None
    error: Optional[str] = None
    previous_revision: Optional[str] = None
    current_revision: Optional[str] = None
    changed_paths: int = 0
    status: List[ServiceStatus] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def elapsed(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def is_fatal(self) -> bool:
        return self.failed_stage is not None

    def exit_code(self) -> int:
        """0 only if nothing failed and no fatal stage occurred"""
        if self.is_fatal():
            return 1
        if self.outcome in (DeploymentOutcome.PARTIALLY_FAILED, DeploymentOutcome.STACK_FAILED, DeploymentOutcome.ABORTED):
            return 1
        if self.result is not None and self.result.has_failures():
            return 1
        return 0

    def all_warnings(self) -> List[str]:
        warnings = list(self.warnings)
        if self.result is not None:
            warnings.extend(self.result.warnings)
        return warnings

    def summary_lines(self) -> List[str]:
        """Human-readable report lines"""
        lines = [
            '=' * 80,
            f"DEPLOYMENT REPORT ({self.run_id})",
            '=' * 80,
        ]
        headline = {
            DeploymentOutcome.NOTHING_TO_DEPLOY: "Nothing to deploy",
            DeploymentOutcome.SUCCEEDED: "Deployed successfully",
            DeploymentOutcome.PARTIALLY_FAILED: "Deployment partially failed",
            DeploymentOutcome.STACK_FAILED: "FULL-STACK DEPLOYMENT FAILED - stack may be left stopped",
            DeploymentOutcome.ABORTED: "Aborted before touching the stack",
        }
        lines.append(f"Outcome: {headline.get(self.outcome, 'unknown')}")
        if self.trigger.dry_run:
            lines.append("Mode: dry run")
        if self.previous_revision or self.current_revision:
            lines.append(
                f"Revisions: {self.previous_revision or 'initial'} -> {self.current_revision or '?'}"
            )
        if self.changed_paths:
            lines.append(f"Changed paths: {self.changed_paths}")
        if self.plan is not None:
            lines.append(f"Plan: {self.plan.describe()} [{self.plan.source.value}]")
        if self.failed_stage is not None:
            lines.append(f"Failed stage: {self.failed_stage.value}")
        if self.error:
            lines.append(f"Error: {self.error}")

        if self.result is not None and self.result.services:
            lines.append("")
            lines.append(f"{'SERVICE':<32} {'RESULT':<10} {'TIME':>8}  REASON")
            for r in self.result.services:
                lines.append(
                    f"{r.service:<32} {r.outcome.value:<10} {r.duration:>7.1f}s  {r.reason or ''}".rstrip()
                )

        warnings = self.all_warnings()
        if warnings:
            lines.append("")
            lines.append(f"Warnings: {len(warnings)}")
            for warning in warnings:
                lines.append(f"   - {warning}")

        if self.status:
            lines.append("")
            lines.append("Running services:")
            for s in self.status:
                lines.append(f"   {s.service:<32} {s.state}")

        lines.append("")
        lines.append(f"Elapsed: {self.elapsed:.1f}s")
        lines.append('=' * 80)
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'trigger': self.trigger.to_dict(),
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'elapsed': round(self.elapsed, 3),
            'outcome': self.outcome.value if self.outcome else None,
            'plan': self.plan.to_dict() if self.plan else None,
            'result': self.result.to_dict() if self.result else None,
            'failed_stage': self.failed_stage.value if self.failed_stage else None,
            'error': self.error,
            'previous_revision': self.previous_revision,
            'current_revision': self.current_revision,
            'changed_paths': self.changed_paths,
            'status': [s.to_dict() for s in self.status],
            'warnings': self.all_warnings(),
            'exit_code': self.exit_code(),
        }
