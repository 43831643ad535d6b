"""
Resolves changed paths into a deployment plan.
"""
from typing import Iterable, List, Optional, Sequence, Tuple
import logging

from ..core.enums import PlanSource
from ..core.models import ChangeSet, DeploymentPlan, ServiceRule


class ServiceMapper:
    """
    Maps a path to the most specific rule in the rule table.

    Rules are kept sorted by prefix length (longest first) so the first match
    is always the longest prefix, independent of declaration order.
    """

    def __init__(self, rules: Sequence[ServiceRule]):
        self.rules: Tuple[ServiceRule, ...] = tuple(
            sorted(rules, key=lambda rule: len(rule.prefix), reverse=True)
        )
        self.logger = logging.getLogger(__name__)

    def match(self, path: str) -> Optional[ServiceRule]:
        """
        Find the longest-prefix rule for a path.

        Args:
            path: Repository-relative file path

        Returns:
            Matching ServiceRule, or None if no rule covers the path
        """
        normalized = ServiceRule.normalize(path)
        for rule in self.rules:
            if rule.matches(normalized):
                return rule
        return None


class ChangeResolver:
    """Turns a ChangeSet into a DeploymentPlan"""

    def __init__(self, mapper: ServiceMapper):
        self.mapper = mapper
        self.logger = logging.getLogger(__name__)

    def resolve(self, change_set: ChangeSet) -> DeploymentPlan:
        """
        Resolve a change set against the rule table.

        An ALL rule hit short-circuits to a full deployment. Paths no rule
        covers are ignored.

        Args:
            change_set: Paths changed between two revisions

        Returns:
            DeploymentPlan (All, Subset or NoOp)
        """
        if change_set.is_empty():
            self.logger.info("No changed paths, nothing to deploy")
            return DeploymentPlan.noop("no changes")

        services = set()
        matched = 0
        unmatched = 0

        for path in change_set:
            rule = self.mapper.match(path)
            if rule is None:
                unmatched += 1
                self.logger.debug(f"No rule for changed path: {path}")
                continue

            matched += 1
            if rule.deploy_all:
                self.logger.info(f"Path {path} matched rule '{rule.prefix}' -> redeploying all services")
                return DeploymentPlan.all(reason=f"{path} matched '{rule.prefix}'")

            self.logger.debug(f"Path {path} matched rule {rule.describe()}")
            services.update(rule.services)

        self.logger.info(
            f"Resolved {len(change_set)} changed paths: matched={matched}, "
            f"unmatched={unmatched}, services={sorted(services)}"
        )

        if not services:
            reason = "no rule matched" if matched == 0 else "matched rules deploy nothing"
            return DeploymentPlan.noop(reason)

        return DeploymentPlan.subset(services)

    @staticmethod
    def from_override(deploy_all: bool, services: Optional[Iterable[str]] = None) -> Optional[DeploymentPlan]:
        """
        Build an operator override plan without looking at the diff.

        Returns:
            DeploymentPlan, or None when no override was requested
        """
        if deploy_all:
            return DeploymentPlan.all(source=PlanSource.OVERRIDE_ALL, reason="deploy-all override")

        names: List[str] = []
        for name in services or []:
            name = name.strip()
            if name and name not in names:
                names.append(name)

        if names:
            return DeploymentPlan.subset(
                names,
                source=PlanSource.OVERRIDE_SERVICES,
                reason="service list override"
            )
        return None
