import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.errors import ConfigurationError
from ..core.models import ServiceRule

ALL_SENTINEL = "ALL"

logger = logging.getLogger(__name__)


class RulesLoader:
    """Load and validate the path-prefix to service rule table"""

    @staticmethod
    def load_from_yaml(file_path: str) -> Tuple[ServiceRule, ...]:
        """Load rules from a YAML file with a top-level 'rules' list"""
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(f"Rules file not found: {file_path}")

        try:
            with open(path, 'r') as file:
                data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse rules file {file_path}: {e}") from e

        if data is None:
            data = {}
        if isinstance(data, list):
            # Bare list form is accepted as well
            data = {'rules': data}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Rules file must contain a mapping or list: {file_path}")

        return RulesLoader.load_from_list(data.get('rules') or [])

    @staticmethod
    def load_from_list(rules_data: List[Any]) -> Tuple[ServiceRule, ...]:
        """
        Build an immutable rule table from raw rule dictionaries.

        Raises:
            ConfigurationError: If any rule is malformed or prefixes collide
        """
        if not isinstance(rules_data, list):
            raise ConfigurationError("'rules' must be a list")

        issues = RulesLoader.validate_rules(rules_data)
        if issues:
            raise ConfigurationError("Rule table validation failed:\n" + "\n".join(issues))

        rules = tuple(RulesLoader._process_rule(rule) for rule in rules_data)
        if not rules:
            logger.warning("Rule table is empty; every change will resolve to a no-op plan")
        else:
            logger.debug(f"Loaded {len(rules)} service rules")
        return rules

    @staticmethod
    def load(rules_path: Optional[str], inline_rules: Optional[List[Dict[str, Any]]] = None) -> Tuple[ServiceRule, ...]:
        """Load from a rules file when given, otherwise from inline rules"""
        if rules_path:
            if inline_rules:
                raise ConfigurationError("Specify either 'rules_path' or inline 'rules', not both")
            return RulesLoader.load_from_yaml(rules_path)
        return RulesLoader.load_from_list(list(inline_rules or []))

    @staticmethod
    def validate_rules(rules_data: List[Any]) -> List[str]:
        """Validate raw rules and return list of issues"""
        issues = []
        seen: Dict[str, int] = {}

        for index, rule in enumerate(rules_data):
            label = f"Rule #{index + 1}"
            if not isinstance(rule, dict):
                issues.append(f"{label} must be a mapping with 'prefix' and 'services'")
                continue

            unknown = set(rule) - {'prefix', 'services', 'description'}
            if unknown:
                issues.append(f"{label} has unknown keys: {', '.join(sorted(unknown))}")

            prefix = rule.get('prefix')
            if not isinstance(prefix, str) or not ServiceRule.normalize(prefix.strip()):
                issues.append(f"{label} must specify a non-empty 'prefix'")
            else:
                normalized = ServiceRule.normalize(prefix.strip())
                label = f"Rule '{normalized}'"
                if normalized in seen:
                    issues.append(
                        f"{label} duplicates rule #{seen[normalized] + 1}; "
                        f"the same prefix cannot map to two target sets"
                    )
                else:
                    seen[normalized] = index

            if 'services' not in rule:
                issues.append(f"{label} must specify 'services' (a list, or {ALL_SENTINEL})")
                continue

            services = rule['services']
            if services is None:
                # Explicit no-op rule
                continue
            if isinstance(services, str):
                if services != ALL_SENTINEL:
                    issues.append(
                        f"{label} services must be a list or the string {ALL_SENTINEL}, got '{services}'"
                    )
                continue
            if not isinstance(services, list):
                issues.append(f"{label} services must be a list or the string {ALL_SENTINEL}")
                continue
            for name in services:
                if not isinstance(name, str) or not name.strip():
                    issues.append(f"{label} contains an empty or non-string service name")
                elif name == ALL_SENTINEL and len(services) > 1:
                    issues.append(f"{label} mixes {ALL_SENTINEL} with named services")

        return issues

    @staticmethod
    def _process_rule(rule: Dict[str, Any]) -> ServiceRule:
        prefix = ServiceRule.normalize(rule['prefix'].strip())
        services = rule.get('services')

        if services == ALL_SENTINEL or services == [ALL_SENTINEL]:
            return ServiceRule(prefix=prefix, deploy_all=True)

        return ServiceRule(
            prefix=prefix,
            services=frozenset(name.strip() for name in (services or []))
        )
