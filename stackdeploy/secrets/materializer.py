"""
Writes secret values into per-service runtime env files.
"""
import logging
import os
import re
import shutil
import uuid
import warnings
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

from ..config.global_config_loader import ServiceSettings
from ..core.errors import SecretMaterializationError, SecretMaterializationWarning
from ..core.models import SecretBundle

_ENV_LINE = re.compile(r'^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=')
_NEEDS_QUOTES = re.compile(r'[\s#"\'$\\]')


def format_env_value(value: str) -> str:
    """Quote a value for a dotenv file when it contains special characters"""
    if value == "" or not _NEEDS_QUOTES.search(value):
        return value
    escaped = value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')
    return f'"{escaped}"'


class EnvironmentMaterializer:
    """
    Updates recognized keys of a service's env file from a SecretBundle.

    Every rewrite is preceded by a snapshot of the existing file; the snapshot
    is flushed to disk before the file is touched. Keys missing from the
    bundle are left as they are.
    """

    def __init__(self, base_dir: str, backup_retention: int = 5):
        """
        Initialize materializer.

        Args:
            base_dir: Directory relative env_file paths are resolved against
            backup_retention: Number of snapshots kept per env file
        """
        self.base_dir = Path(base_dir)
        self.backup_retention = max(1, backup_retention)
        self.logger = logging.getLogger(__name__)

    def env_path(self, settings: ServiceSettings) -> Optional[Path]:
        if not settings.env_file:
            return None
        path = Path(settings.env_file)
        if not path.is_absolute():
            path = self.base_dir / path
        return path

    def materialize(self, bundle: SecretBundle, settings: ServiceSettings) -> bool:
        """
        Apply secret values to the service's env file.

        Args:
            bundle: Secret values for this deployment attempt
            settings: Service settings (env file and recognized keys)

        Returns:
            True if the env file was (re)written; False if the service declares
            no env file or the bundle holds none of its keys

        Raises:
            SecretMaterializationError: If the snapshot or rewrite fails
        """
        path = self.env_path(settings)
        if path is None:
            message = (
                f"Service {settings.name} declares secret keys but no env_file; "
                f"skipping secret materialization"
            )
            self.logger.warning(message)
            warnings.warn(message, SecretMaterializationWarning, stacklevel=2)
            return False

        values = bundle.subset(settings.secret_keys)
        if not values:
            self.logger.info(f"No secret values available for {settings.name}, leaving {path} untouched")
            return False

        try:
            with self._snapshotted(path) as lines:
                updated = self._apply_values(lines, values)
                self._write_atomic(path, updated)
        except OSError as e:
            raise SecretMaterializationError(settings.name, str(path), str(e)) from e

        # Only key names are logged, never values
        self.logger.info(
            f"Materialized {len(values)} secret(s) for {settings.name} into {path}: "
            f"{', '.join(sorted(values))}"
        )
        self._prune_backups(path)
        return True

    @contextmanager
    def _snapshotted(self, path: Path) -> Iterator[List[str]]:
        """
        Read an env file after securing a snapshot of it.

        Yields the file's lines; the snapshot is on disk before control returns
        to the caller, so no write can happen without one.
        """
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            self.logger.info(f"Env file {path} does not exist yet, creating it")
            yield []
            return

        backup = self.backup_path(path)
        shutil.copy2(path, backup)
        with open(backup, 'rb') as f:
            os.fsync(f.fileno())
        self.logger.debug(f"Snapshot of {path} saved to {backup}")

        with open(path, 'r', encoding='utf-8') as f:
            lines = f.read().splitlines()
        yield lines

    def backup_path(self, path: Path) -> Path:
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S%fZ')
        return path.with_name(f"{path.name}.bak.{stamp}")

    def list_backups(self, path: Path) -> List[Path]:
        """Snapshots of an env file, newest first"""
        return sorted(path.parent.glob(f"{path.name}.bak.*"), reverse=True)

    @staticmethod
    def _apply_values(lines: List[str], values: SecretBundle) -> List[str]:
        """Replace recognized keys in place, append the ones not present yet"""
        pending = dict(values)
        updated = []
        for line in lines:
            match = _ENV_LINE.match(line)
            if match and match.group(1) in values:
                key = match.group(1)
                exported = line.lstrip().startswith('export ')
                prefix = 'export ' if exported else ''
                updated.append(f"{prefix}{key}={format_env_value(values[key])}")
                pending.pop(key, None)
            else:
                updated.append(line)

        for key in sorted(pending):
            updated.append(f"{key}={format_env_value(pending[key])}")
        return updated

    def _write_atomic(self, path: Path, lines: List[str]) -> None:
        """Write via temp file + rename; keeps the original file mode"""
        temp_path = path.with_name(f".{path.name}.tmp_{uuid.uuid4().hex[:8]}")
        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                f.write("\n".join(lines) + ("\n" if lines else ""))
                f.flush()
                os.fsync(f.fileno())
            if path.exists():
                shutil.copymode(path, temp_path)
            else:
                os.chmod(temp_path, 0o600)
            os.replace(temp_path, path)
        finally:
            if temp_path.exists():
                temp_path.unlink()

    def _prune_backups(self, path: Path) -> None:
        for old in self.list_backups(path)[self.backup_retention:]:
            try:
                old.unlink()
                self.logger.debug(f"Removed old env snapshot: {old}")
            except OSError as e:
                self.logger.warning(f"Failed to remove old env snapshot {old}: {e}")
