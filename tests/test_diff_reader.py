"""
Test cases for reading changed paths from git.
The git subprocess is replaced by a scripted fake.
"""

from unittest.mock import patch

import pytest

from stackdeploy.changes.diff_reader import GitDiffReader
from stackdeploy.core.errors import ConfigurationError

HEAD_SHA = "b" * 40
PREV_SHA = "a" * 40


class ScriptedGit:
    """Answers git invocations from a table keyed by the subcommand"""

    def __init__(self, known_revisions=None, diff_output="", tree_output="", fetch_ok=True):
        self.known_revisions = known_revisions if known_revisions is not None else {"HEAD": HEAD_SHA}
        self.diff_output = diff_output
        self.tree_output = tree_output
        self.fetch_ok = fetch_ok
        self.invocations = []

    def __call__(self, args):
        self.invocations.append(list(args))
        command = args[0]
        if command == "rev-parse" and args[1] == "--is-inside-work-tree":
            return 0, "true\n", ""
        if command == "rev-parse":
            revision = args[-1][:-len("^{commit}")]
            if revision in self.known_revisions:
                return 0, self.known_revisions[revision] + "\n", ""
            return 1, "", ""
        if command == "ls-tree":
            return 0, self.tree_output, ""
        if command == "diff":
            return 0, self.diff_output, ""
        if command == "fetch":
            return (0, "", "") if self.fetch_ok else (128, "", "fatal: unable to access remote")
        if command == "reset":
            return 0, "", ""
        raise AssertionError(f"unexpected git call: {args}")


@pytest.fixture
def reader(tmp_path):
    return GitDiffReader(str(tmp_path))


class TestGitDiffReader:
    """Test change set computation"""

    @pytest.mark.asyncio
    async def test_first_deploy_lists_all_tracked_paths(self, reader):
        git = ScriptedGit(tree_output="docker-compose.yml\0services/auth/app.py\0")
        with patch.object(reader, '_run_git', side_effect=git):
            change_set = await reader.read_changes(None)

        assert change_set.initial
        assert change_set.paths == ("docker-compose.yml", "services/auth/app.py")
        assert change_set.previous_revision is None
        assert change_set.current_revision == HEAD_SHA

    @pytest.mark.asyncio
    async def test_first_deploy_lists_tree_of_requested_revision(self, reader):
        """Test that the path list comes from the deployed revision, not the working tree"""
        git = ScriptedGit(
            known_revisions={"HEAD": HEAD_SHA, "v1.0.0": PREV_SHA},
            tree_output="svc_a/x\0"
        )
        with patch.object(reader, '_run_git', side_effect=git):
            change_set = await reader.read_changes(None, "v1.0.0")

        assert change_set.current_revision == PREV_SHA
        assert ["ls-tree", "-r", "--name-only", "-z", PREV_SHA] in git.invocations

    @pytest.mark.asyncio
    @pytest.mark.parametrize("previous", ["", "initial", "0" * 40])
    async def test_initial_markers(self, reader, previous):
        git = ScriptedGit(tree_output="a\0")
        with patch.object(reader, '_run_git', side_effect=git):
            change_set = await reader.read_changes(previous)
        assert change_set.initial

    @pytest.mark.asyncio
    async def test_diff_between_revisions(self, reader):
        git = ScriptedGit(
            known_revisions={"HEAD": HEAD_SHA, "v1.2.0": PREV_SHA},
            diff_output="services/auth/app.py\0nginx/conf.d/default.conf\0"
        )
        with patch.object(reader, '_run_git', side_effect=git):
            change_set = await reader.read_changes("v1.2.0")

        assert not change_set.initial
        assert change_set.paths == ("services/auth/app.py", "nginx/conf.d/default.conf")
        assert change_set.previous_revision == PREV_SHA
        assert ["diff", "--name-only", "--no-renames", "-z", PREV_SHA, HEAD_SHA] in git.invocations

    @pytest.mark.asyncio
    async def test_same_revision_is_empty(self, reader):
        git = ScriptedGit(known_revisions={"HEAD": HEAD_SHA, HEAD_SHA: HEAD_SHA})
        with patch.object(reader, '_run_git', side_effect=git):
            change_set = await reader.read_changes(HEAD_SHA)

        assert change_set.is_empty()
        assert not any(call[0] == "diff" for call in git.invocations)

    @pytest.mark.asyncio
    async def test_unresolvable_previous_revision_is_fatal(self, reader):
        """Test that an unknown revision raises instead of falling back to a full deploy"""
        git = ScriptedGit()
        with patch.object(reader, '_run_git', side_effect=git):
            with pytest.raises(ConfigurationError, match="cannot be resolved"):
                await reader.read_changes("deadbeef")

        assert not any(call[0] in ("ls-tree", "diff") for call in git.invocations)

    @pytest.mark.asyncio
    async def test_missing_repository(self, tmp_path):
        reader = GitDiffReader(str(tmp_path / "missing"))
        with pytest.raises(ConfigurationError, match="does not exist"):
            await reader.read_changes(None)

    @pytest.mark.asyncio
    async def test_not_a_work_tree(self, reader):
        def not_a_repo(args):
            return 128, "", "fatal: not a git repository"

        with patch.object(reader, '_run_git', side_effect=not_a_repo):
            with pytest.raises(ConfigurationError, match="not a git working tree"):
                await reader.read_changes(None)

    @pytest.mark.asyncio
    async def test_sync_fetches_and_resets(self, reader):
        git = ScriptedGit()
        with patch.object(reader, '_run_git', side_effect=git):
            sha = await reader.sync("origin", "main")

        assert sha == HEAD_SHA
        assert ["fetch", "origin"] in git.invocations
        assert ["reset", "--hard", "origin/main"] in git.invocations

    @pytest.mark.asyncio
    async def test_sync_fetch_failure(self, reader):
        git = ScriptedGit(fetch_ok=False)
        with patch.object(reader, '_run_git', side_effect=git):
            with pytest.raises(ConfigurationError, match="fetch origin failed"):
                await reader.sync("origin", "main")

        assert not any(call[0] == "reset" for call in git.invocations)

    @pytest.mark.asyncio
    async def test_missing_git_executable(self, reader):
        reader.git_command = "git-does-not-exist"
        with pytest.raises(ConfigurationError, match="not found"):
            await reader.read_changes(None)
