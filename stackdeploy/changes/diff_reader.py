"""
Reads changed paths between two revisions of the tracked git tree.
"""
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from ..core.errors import ConfigurationError
from ..core.models import ChangeSet

INITIAL_REVISION = "initial"

# Sent by git hosts as the "before" sha of a newly created branch
_NULL_SHA = "0" * 40


class GitDiffReader:
    """
    Computes ChangeSets from git history.

    A missing previous revision means first deploy: every tracked path counts
    as changed. A previous revision that cannot be resolved is a fatal
    configuration error, never a silent full redeploy.
    """

    def __init__(self, repo_path: str, git_command: str = "git"):
        """
        Initialize diff reader.

        Args:
            repo_path: Working tree of the deployed repository
            git_command: git executable
        """
        self.repo_path = Path(repo_path)
        self.git_command = git_command
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def is_initial(revision: Optional[str]) -> bool:
        """Whether a previous-revision value means 'nothing deployed yet'"""
        if revision is None:
            return True
        revision = revision.strip()
        return revision in ("", INITIAL_REVISION, _NULL_SHA)

    async def read_changes(
        self,
        previous_revision: Optional[str],
        current_revision: Optional[str] = None
    ) -> ChangeSet:
        """
        Get the paths that differ between two revisions.

        Args:
            previous_revision: Last deployed revision, or None/'initial' on first deploy
            current_revision: Revision being deployed (defaults to HEAD)

        Returns:
            ChangeSet of changed paths

        Raises:
            ConfigurationError: If the repository or a revision is unavailable
        """
        await self._ensure_repository()

        current_sha = await self.resolve_revision(current_revision or "HEAD")

        if self.is_initial(previous_revision):
            paths = await self._git_paths(["ls-tree", "-r", "--name-only", "-z", current_sha])
            self.logger.info(
                f"No previous revision, treating all {len(paths)} paths in {current_sha[:12]} as changed"
            )
            return ChangeSet(
                paths=tuple(paths),
                previous_revision=None,
                current_revision=current_sha,
                initial=True
            )

        previous_sha = await self.resolve_revision(previous_revision)

        if previous_sha == current_sha:
            self.logger.info(f"Revision {current_sha[:12]} already deployed, no changes")
            return ChangeSet(previous_revision=previous_sha, current_revision=current_sha)

        paths = await self._git_paths(
            ["diff", "--name-only", "--no-renames", "-z", previous_sha, current_sha]
        )
        self.logger.info(
            f"{len(paths)} paths changed between {previous_sha[:12]} and {current_sha[:12]}"
        )
        return ChangeSet(
            paths=tuple(paths),
            previous_revision=previous_sha,
            current_revision=current_sha
        )

    async def resolve_revision(self, revision: str) -> str:
        """
        Resolve a revision to a full commit sha.

        Raises:
            ConfigurationError: If the revision is not in the local history
        """
        code, stdout, stderr = await self._run_git(
            ["rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"]
        )
        if code != 0 or not stdout.strip():
            raise ConfigurationError(
                f"Revision '{revision}' cannot be resolved in {self.repo_path}; "
                f"revision history is unavailable (shallow clone or rewritten history?)"
            )
        return stdout.strip()

    async def sync(self, remote: str, branch: str) -> str:
        """
        Update the working tree to remote/branch (fetch + hard reset).

        Returns:
            The commit sha the tree was reset to
        """
        await self._ensure_repository()

        self.logger.info(f"Fetching {remote}...")
        code, _, stderr = await self._run_git(["fetch", remote])
        if code != 0:
            raise ConfigurationError(f"git fetch {remote} failed: {stderr.strip()}")

        target = f"{remote}/{branch}"
        code, _, stderr = await self._run_git(["reset", "--hard", target])
        if code != 0:
            raise ConfigurationError(f"git reset --hard {target} failed: {stderr.strip()}")

        sha = await self.resolve_revision("HEAD")
        self.logger.info(f"Working tree updated to {target} ({sha[:12]})")
        return sha

    async def _ensure_repository(self) -> None:
        if not self.repo_path.is_dir():
            raise ConfigurationError(f"Repository path does not exist: {self.repo_path}")

        code, stdout, stderr = await self._run_git(["rev-parse", "--is-inside-work-tree"])
        if code != 0 or stdout.strip() != "true":
            raise ConfigurationError(
                f"{self.repo_path} is not a git working tree: {stderr.strip() or stdout.strip()}"
            )

    async def _git_paths(self, args: List[str]) -> List[str]:
        code, stdout, stderr = await self._run_git(args)
        if code != 0:
            raise ConfigurationError(f"git {args[0]} failed: {stderr.strip()}")
        return [p for p in stdout.split("\0") if p]

    async def _run_git(self, args: List[str]) -> Tuple[int, str, str]:
        """
        Run a git subcommand in the repository.

        Returns:
            (exit_code, stdout, stderr) tuple
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.git_command,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.repo_path),
            )
        except FileNotFoundError as e:
            raise ConfigurationError(f"git executable not found: {self.git_command}") from e

        stdout_bytes, stderr_bytes = await proc.communicate()
        return (
            proc.returncode or 0,
            stdout_bytes.decode("utf-8", errors="replace"),
            stderr_bytes.decode("utf-8", errors="replace"),
        )
