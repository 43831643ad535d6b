"""
Docker Compose implementation of the container runtime.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..core.errors import FetchError, RuntimeCommandError
from ..core.models import ServiceStatus
from .base import ContainerRuntime


class ComposeRuntime(ContainerRuntime):
    """Shells out to docker-compose (or `docker compose`) in the project directory"""

    def __init__(
        self,
        project_dir: str,
        compose_command: Optional[Sequence[str]] = None,
        compose_files: Optional[Sequence[str]] = None,
        project_name: Optional[str] = None,
        command_timeout: float = 1800.0
    ):
        """
        Initialize compose runtime.

        Args:
            project_dir: Directory holding the compose project
            compose_command: Base command, e.g. ['docker-compose'] or ['docker', 'compose']
            compose_files: Optional explicit compose files (-f)
            project_name: Optional compose project name (-p)
            command_timeout: Seconds before a command is killed
        """
        self.project_dir = Path(project_dir)
        self.compose_command = list(compose_command or ["docker-compose"])
        self.compose_files = list(compose_files or [])
        self.project_name = project_name
        self.command_timeout = command_timeout
        self.logger = logging.getLogger(__name__)

    def _base_args(self) -> List[str]:
        args = list(self.compose_command)
        for compose_file in self.compose_files:
            args.extend(["-f", compose_file])
        if self.project_name:
            args.extend(["-p", self.project_name])
        return args

    async def stop_all(self) -> None:
        self.logger.info("Stopping all services...")
        await self._check(["down"])

    async def pull_image(self, service: str) -> None:
        try:
            await self._check(["pull", service])
        except RuntimeCommandError as e:
            raise FetchError(f"No pre-built image for {service}: {e}") from e

    async def pull_all(self) -> None:
        self.logger.info("Pulling latest images...")
        try:
            await self._check(["pull"])
        except RuntimeCommandError as e:
            raise FetchError(f"Could not pull images: {e}") from e

    async def build_and_start(self, service: str, no_deps: bool = True) -> None:
        args = ["up", "-d", "--build"]
        if no_deps:
            args.append("--no-deps")
        args.append(service)
        await self._check(args)

    async def build_and_start_all(self) -> None:
        self.logger.info("Building and starting all services...")
        await self._check(["up", "-d", "--build"])

    async def list_services(self) -> List[str]:
        stdout = await self._check(["config", "--services"])
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def list_status(self) -> List[ServiceStatus]:
        code, stdout, stderr = await self._run(["ps", "-a", "--format", "json"])
        if code == 0:
            statuses = self._parse_ps_json(stdout)
            if statuses is not None:
                return statuses

        # Older docker-compose has no JSON output: derive states from service lists
        self.logger.debug("JSON ps output unavailable, falling back to service filters")
        running = set(
            line.strip()
            for line in (await self._check(["ps", "--services", "--filter", "status=running"])).splitlines()
            if line.strip()
        )
        return [
            ServiceStatus(service=name, state="running" if name in running else "not running")
            for name in await self.list_services()
        ]

    @staticmethod
    def _parse_ps_json(stdout: str) -> Optional[List[ServiceStatus]]:
        """Parse `ps --format json`, which is a JSON array or JSON lines depending on version"""
        text = stdout.strip()
        if not text:
            return []
        try:
            data = json.loads(text)
            rows = data if isinstance(data, list) else [data]
        except json.JSONDecodeError:
            try:
                rows = [json.loads(line) for line in text.splitlines() if line.strip()]
            except json.JSONDecodeError:
                return None

        statuses = []
        for row in rows:
            if not isinstance(row, dict):
                return None
            name = row.get("Service") or row.get("Name") or "?"
            state = row.get("State") or row.get("Status") or "unknown"
            statuses.append(ServiceStatus(service=name, state=state))
        return sorted(statuses, key=lambda s: s.service)

    async def _check(self, args: List[str]) -> str:
        """Run a compose subcommand and raise if it fails"""
        code, stdout, stderr = await self._run(args)
        if code != 0:
            raise RuntimeCommandError(self._describe(args), code, stderr)
        return stdout

    def _describe(self, args: List[str]) -> str:
        return " ".join(self.compose_command + args)

    async def _run(self, args: List[str]) -> Tuple[int, str, str]:
        """
        Run a compose subcommand in the project directory.

        Returns:
            (exit_code, stdout, stderr) tuple
        """
        command = self._base_args() + args
        self.logger.debug(f"Running: {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.project_dir),
            )
        except FileNotFoundError as e:
            raise RuntimeCommandError(self._describe(args), 127, str(e)) from e
        except OSError as e:
            # Not executable, or the host is out of processes/descriptors/memory
            raise RuntimeCommandError(self._describe(args), 126, str(e)) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.command_timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise RuntimeCommandError(
                self._describe(args), None, f"killed after {self.command_timeout}s"
            )

        return (
            proc.returncode or 0,
            stdout_bytes.decode("utf-8", errors="replace"),
            stderr_bytes.decode("utf-8", errors="replace"),
        )
