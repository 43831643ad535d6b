"""
Test cases for the stackdeploy CLI.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from stackdeploy.cli.deploy_cli import cli, parse_services
from stackdeploy.core.enums import DeploymentOutcome, Stage
from stackdeploy.core.models import DeploymentPlan, DeploymentReport, TriggerRequest
from stackdeploy.deployment.history import DeploymentHistory


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'stackdeploy.yaml'
    path.write_text(
        f"repository:\n  path: {tmp_path}\n"
        f"lock:\n  path: {tmp_path / 'deploy.lock'}\n"
        f"history:\n  state_dir: {tmp_path / 'state'}\n"
        "rules:\n  - prefix: nginx\n    services: [nginx]\n"
    )
    return str(path)


def make_report(trigger, outcome, failed_stage=None, plan=None):
    now = datetime.now(timezone.utc)
    return DeploymentReport(
        run_id="20260101T000000Z-cli",
        trigger=trigger,
        started_at=now,
        finished_at=now,
        outcome=outcome,
        plan=plan,
        failed_stage=failed_stage
    )


def patched_orchestrator(outcome, failed_stage=None, plan=None):
    """Patch Orchestrator.from_global_config with one that echoes the trigger into a report"""
    orchestrator = Mock()

    async def run(trigger, cancel_event=None):
        return make_report(trigger, outcome, failed_stage, plan)

    orchestrator.run = AsyncMock(side_effect=run)
    return patch(
        'stackdeploy.cli.deploy_cli.Orchestrator.from_global_config',
        return_value=orchestrator
    ), orchestrator


class TestParseServices:
    def test_space_comma_and_repeated(self):
        assert parse_services("auth-service cart-service,nginx", ("postgres", "nginx")) == [
            "auth-service", "cart-service", "nginx", "postgres"
        ]

    def test_nothing(self):
        assert parse_services(None, ()) == []


class TestRunCommand:
    """Test the run command"""

    def test_successful_run_exits_zero(self, config_file):
        patcher, orchestrator = patched_orchestrator(
            DeploymentOutcome.SUCCEEDED, plan=DeploymentPlan.subset(['nginx'])
        )
        with patcher:
            result = CliRunner().invoke(cli, ['run', '--global-config', config_file, '--previous', 'abc123'])

        assert result.exit_code == 0, result.output
        assert "Deployed successfully" in result.output
        trigger = orchestrator.run.await_args.args[0]
        assert trigger.previous_revision == 'abc123'
        assert not trigger.has_override()

    def test_aborted_run_exits_nonzero(self, config_file):
        patcher, _ = patched_orchestrator(DeploymentOutcome.ABORTED, failed_stage=Stage.DIFF)
        with patcher:
            result = CliRunner().invoke(cli, ['run', '--global-config', config_file])

        assert result.exit_code == 1
        assert "Failed stage: diff" in result.output

    def test_service_override_is_passed_through(self, config_file):
        patcher, orchestrator = patched_orchestrator(DeploymentOutcome.SUCCEEDED)
        with patcher:
            result = CliRunner().invoke(cli, [
                'run', '--global-config', config_file,
                '--services', 'auth-service cart-service', '--service', 'nginx'
            ])

        assert result.exit_code == 0, result.output
        trigger = orchestrator.run.await_args.args[0]
        assert trigger.services == ['auth-service', 'cart-service', 'nginx']

    def test_missing_config_is_click_error(self, tmp_path):
        result = CliRunner().invoke(cli, ['run', '--global-config', str(tmp_path / 'missing.yaml')])
        assert result.exit_code == 1
        assert "Global config file not found" in result.output

    def test_invalid_rules_is_click_error(self, tmp_path):
        path = tmp_path / 'stackdeploy.yaml'
        path.write_text(
            f"lock:\n  path: {tmp_path / 'deploy.lock'}\n"
            f"history:\n  state_dir: {tmp_path / 'state'}\n"
            "rules:\n  - prefix: nginx\n    services: nginx\n"
        )
        result = CliRunner().invoke(cli, ['run', '--global-config', str(path)])
        assert result.exit_code == 1
        assert "Rule table validation failed" in result.output


class TestPlanCommand:
    def test_plan_is_a_dry_run(self, config_file):
        patcher, orchestrator = patched_orchestrator(
            DeploymentOutcome.SUCCEEDED, plan=DeploymentPlan.subset(['nginx'])
        )
        with patcher:
            result = CliRunner().invoke(cli, ['plan', '--global-config', config_file])

        assert result.exit_code == 0, result.output
        assert orchestrator.run.await_args.args[0].dry_run
        assert "Mode: dry run" in result.output
        assert "Plan: nginx" in result.output


class TestHistoryCommand:
    def test_history_lists_reports(self, config_file, tmp_path):
        history = DeploymentHistory(str(tmp_path / 'state'))
        history.record_deployed_revision("d" * 40, "run-1")
        history.save_report(make_report(
            TriggerRequest(), DeploymentOutcome.PARTIALLY_FAILED, plan=DeploymentPlan.subset(['nginx'])
        ))

        result = CliRunner().invoke(cli, ['history', '--global-config', config_file])

        assert result.exit_code == 0, result.output
        assert "d" * 40 in result.output
        assert "partially_failed" in result.output
        assert "nginx" in result.output

    def test_history_empty(self, config_file):
        result = CliRunner().invoke(cli, ['history', '--global-config', config_file])
        assert "No deployments recorded" in result.output
