"""
Test cases for the host deployment lock and deployment history storage.
"""

import json
import os
import logging
from datetime import datetime, timezone

import pytest

from stackdeploy.core.enums import DeploymentOutcome
from stackdeploy.core.errors import ConfigurationError
from stackdeploy.core.models import DeploymentPlan, DeploymentReport, TriggerRequest
from stackdeploy.deployment.history import DeploymentHistory, LoggingCollector
from stackdeploy.deployment.lock import DeploymentLockManager


class TestDeploymentLockManager:
    """Test single-writer lock behavior"""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, tmp_path):
        lock = DeploymentLockManager(str(tmp_path / 'locks' / 'deploy.lock'), timeout=1)

        async with lock:
            assert lock.held
            assert lock.is_locked()

        assert not lock.held
        assert not lock.is_locked()

    @pytest.mark.asyncio
    async def test_second_holder_times_out(self, tmp_path):
        path = str(tmp_path / 'deploy.lock')
        first = DeploymentLockManager(path, timeout=1)
        second = DeploymentLockManager(path, timeout=0.2, poll_interval=0.05)

        async with first:
            assert second.is_locked()
            with pytest.raises(TimeoutError, match="Another deployment may be in progress"):
                await second.acquire()

        # Free again once the first holder is done
        await second.acquire()
        assert second.held
        await second.release()

    @pytest.mark.asyncio
    async def test_lock_file_holds_pid_while_held(self, tmp_path):
        path = tmp_path / 'deploy.lock'
        async with DeploymentLockManager(str(path)):
            assert path.read_text().strip() == str(os.getpid())
        assert path.read_text() == ""

    @pytest.mark.asyncio
    async def test_release_without_acquire_is_noop(self, tmp_path):
        lock = DeploymentLockManager(str(tmp_path / 'deploy.lock'))
        await lock.release()
        assert not lock.held


def make_report(run_id, outcome=DeploymentOutcome.SUCCEEDED):
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return DeploymentReport(
        run_id=run_id,
        trigger=TriggerRequest(),
        started_at=started,
        finished_at=started,
        outcome=outcome,
        plan=DeploymentPlan.subset(['nginx'])
    )


class TestDeploymentHistory:
    """Test report, state and log storage"""

    def test_last_deployed_revision_round_trip(self, tmp_path):
        history = DeploymentHistory(str(tmp_path))
        assert history.last_deployed_revision() is None

        history.record_deployed_revision("c" * 40, "run-1")

        assert history.last_deployed_revision() == "c" * 40
        state = json.loads((tmp_path / 'state.json').read_text())
        assert state['last_run_id'] == "run-1"

    def test_corrupt_state_is_configuration_error(self, tmp_path):
        history = DeploymentHistory(str(tmp_path))
        (tmp_path / 'state.json').write_text("{not json")
        with pytest.raises(ConfigurationError, match="unreadable"):
            history.last_deployed_revision()

    @pytest.mark.parametrize("content", ['{}', '{"last_deployed_revision": 42}', '["abc"]'])
    def test_state_without_revision_is_configuration_error(self, tmp_path, content):
        history = DeploymentHistory(str(tmp_path))
        (tmp_path / 'state.json').write_text(content)
        with pytest.raises(ConfigurationError):
            history.last_deployed_revision()

    def test_recording_replaces_damaged_state(self, tmp_path):
        history = DeploymentHistory(str(tmp_path))
        (tmp_path / 'state.json').write_text("{not json")

        history.record_deployed_revision("e" * 40, "run-2")

        assert history.last_deployed_revision() == "e" * 40

    def test_reports_newest_first_and_capped(self, tmp_path):
        history = DeploymentHistory(str(tmp_path), max_reports=3)
        for i in range(5):
            history.save_report(make_report(f"20260101T00000{i}Z-abc"))

        reports = history.list_reports()
        assert [r['run_id'] for r in reports] == [
            "20260101T000004Z-abc",
            "20260101T000003Z-abc",
            "20260101T000002Z-abc",
        ]
        assert history.list_reports(limit=1)[0]['run_id'] == "20260101T000004Z-abc"

    def test_load_report(self, tmp_path):
        history = DeploymentHistory(str(tmp_path))
        history.save_report(make_report("run-x", DeploymentOutcome.PARTIALLY_FAILED))

        saved = history.load_report("run-x")
        assert saved['outcome'] == 'partially_failed'
        assert saved['plan']['services'] == ['nginx']
        assert history.load_report("missing") is None

    def test_collector_captures_run_logs(self, tmp_path):
        history = DeploymentHistory(str(tmp_path))
        collector = LoggingCollector(history)
        logger = logging.getLogger("stackdeploy.tests.collector")

        collector.start_run("run-logs")
        logger.warning("during run")
        collector.stop_run()
        logger.warning("after run")

        logs = history.get_run_logs("run-logs")
        assert [entry['message'] for entry in logs] == ["during run"]
        assert logs[0]['level'] == "WARNING"
        assert history.get_run_logs("run-logs", level="error") == []
