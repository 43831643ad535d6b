import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.errors import ConfigurationError
from ..core.models import DeploymentReport


class DeploymentHistory:
    """
    File-based storage for deployment reports, per-run logs and the
    last successfully deployed revision.

    Layout under state_dir:
        state.json          last deployed revision
        reports/<run>.json  one report per attempt
        logs/<run>.log      JSON lines captured while the run was active
    """

    def __init__(self, state_dir: str = "./data/deployments", max_reports: int = 50):
        self.state_dir = Path(state_dir)
        self.max_reports = max_reports
        self.logger = logging.getLogger(__name__)

        self.reports_dir = self.state_dir / "reports"
        self.logs_dir = self.state_dir / "logs"
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    @property
    def state_file(self) -> Path:
        return self.state_dir / "state.json"

    def _read_state(self) -> Dict[str, Any]:
        """
        Raises:
            ConfigurationError: If the state file exists but cannot be read
        """
        if not self.state_file.exists():
            return {}
        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Deployment state {self.state_file} is unreadable: {e}. "
                f"Pass --previous or repair the file"
            ) from e
        if not isinstance(state, dict):
            raise ConfigurationError(f"Deployment state {self.state_file} is not a JSON object")
        return state

    def last_deployed_revision(self) -> Optional[str]:
        """
        Revision of the last successful deployment.

        None only when no state file exists (nothing was deployed yet).

        Raises:
            ConfigurationError: If the state file is damaged or holds no revision
        """
        if not self.state_file.exists():
            return None
        revision = self._read_state().get("last_deployed_revision")
        if not isinstance(revision, str) or not revision.strip():
            raise ConfigurationError(
                f"Deployment state {self.state_file} has no last deployed revision. "
                f"Pass --previous or repair the file"
            )
        return revision

    def record_deployed_revision(self, revision: str, run_id: str) -> None:
        try:
            state = self._read_state()
        except ConfigurationError as e:
            # A deployment just succeeded; its revision replaces the damaged state
            self.logger.warning(f"Replacing damaged deployment state: {e}")
            state = {}
        state.update({
            "last_deployed_revision": revision,
            "last_run_id": run_id,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        })
        self._write_json(self.state_file, state)
        self.logger.info(f"Recorded deployed revision {revision[:12]}")

    def save_report(self, report: DeploymentReport) -> Path:
        """Persist a report and cap the number of stored reports"""
        path = self.reports_dir / f"{report.run_id}.json"
        self._write_json(path, report.to_dict())
        self._cleanup_old(self.reports_dir, "*.json")
        return path

    def list_reports(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Stored reports, newest first"""
        reports = []
        files = sorted(self.reports_dir.glob("*.json"), reverse=True)
        if limit is not None and limit >= 0:
            files = files[:limit]
        for report_file in files:
            try:
                with open(report_file, "r", encoding="utf-8") as f:
                    reports.append(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                self.logger.debug(f"Skipping unreadable report {report_file}: {e}")
        return reports

    def load_report(self, run_id: str) -> Optional[Dict[str, Any]]:
        path = self.reports_dir / f"{run_id}.json"
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def append_log(self, run_id: str, timestamp: datetime, level: str, message: str, logger_name: Optional[str] = None) -> None:
        """Append a single log entry for a given run as a JSON line."""
        entry: Dict[str, Any] = {
            "timestamp": timestamp.isoformat(),
            "level": level,
            "message": message,
            "run_id": run_id,
        }
        if logger_name:
            entry["logger"] = logger_name

        run_file = self.logs_dir / f"{run_id}.log"
        try:
            with open(run_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            self.logger.warning(f"Failed to append log for run {run_id}: {e}")

    def get_run_logs(self, run_id: str, level: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read logs for a specific run, in append order."""
        run_file = self.logs_dir / f"{run_id}.log"
        if not run_file.exists():
            return []

        logs: List[Dict[str, Any]] = []
        with open(run_file, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError as parse_err:
                    self.logger.debug(f"Skipping malformed log line in {run_file}: {parse_err}")
                    continue
                if level and data.get("level") != level.upper():
                    continue
                logs.append(data)
        return logs

    def cleanup_logs(self) -> None:
        self._cleanup_old(self.logs_dir, "*.log")

    def _cleanup_old(self, directory: Path, pattern: str) -> None:
        """Keep only the latest N files; run ids sort chronologically"""
        files = sorted(directory.glob(pattern), reverse=True)
        for old_file in files[self.max_reports:]:
            try:
                old_file.unlink()
                self.logger.debug(f"Removed old history file: {old_file}")
            except OSError as e:
                self.logger.warning(f"Failed to remove old history file {old_file}: {e}")

    @staticmethod
    def _write_json(path: Path, data: Dict[str, Any]) -> None:
        temp_path = path.with_name(f".{path.name}.tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)


class RunLogsHandler(logging.Handler):
    """Logging handler that forwards records to DeploymentHistory for one run."""

    def __init__(self, history: DeploymentHistory, run_id: str):
        super().__init__()
        self.history = history
        self.run_id = run_id

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = self.format(record) if self.formatter else record.getMessage()
            self.history.append_log(
                run_id=self.run_id,
                timestamp=datetime.fromtimestamp(record.created),
                level=record.levelname,
                message=message,
                logger_name=record.name,
            )
        except Exception:
            self.handleError(record)


class LoggingCollector:
    """Manages lifecycle of the run-specific logging handler."""

    def __init__(self, history: DeploymentHistory, logger_name: str = "stackdeploy"):
        self.history = history
        self.logger_name = logger_name
        self._handler: Optional[RunLogsHandler] = None

    def start_run(self, run_id: str, level: int = logging.DEBUG) -> None:
        self.stop_run()  # Ensure any existing handler is removed first
        handler = RunLogsHandler(self.history, run_id)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger(self.logger_name).addHandler(handler)
        self._handler = handler

    def stop_run(self) -> None:
        if self._handler is not None:
            logging.getLogger(self.logger_name).removeHandler(self._handler)
            self._handler = None
            self.history.cleanup_logs()
