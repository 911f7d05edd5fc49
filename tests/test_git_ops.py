"""Tests for git operations module."""

from pathlib import Path

import pytest
from git import Repo

from conftest import commit_file, init_repo
from josh_sync.errors import CommandError, JoshSyncError
from josh_sync.git_ops import GitRepository, ResetOnFailure, clone_repo


class TestGitRepository:
    """Tests for GitRepository wrapper."""

    def test_init_valid_repo(self, filtered_repo: Path):
        """Test initializing with a valid git repo."""
        git_repo = GitRepository(filtered_repo)
        assert git_repo.path == filtered_repo

    def test_init_from_subdirectory(self, filtered_repo: Path):
        """Test that the repository root is found from a subdirectory."""
        subdir = filtered_repo / "src"
        subdir.mkdir()
        assert GitRepository(subdir).path == filtered_repo

    def test_init_invalid_repo(self, temp_dir: Path):
        """Test initializing with invalid path raises error."""
        invalid_path = temp_dir / "not-a-repo"
        invalid_path.mkdir()

        with pytest.raises(JoshSyncError, match="Not a valid git repository"):
            GitRepository(invalid_path)

    def test_get_current_commit(self, filtered_repo: Path):
        """Test getting current commit hash."""
        git_repo = GitRepository(filtered_repo)
        commit_hash = git_repo.get_current_commit()
        assert commit_hash == Repo(filtered_repo).head.commit.hexsha
        assert len(commit_hash) == 40  # Full SHA

    def test_failed_command_raises(self, filtered_repo: Path):
        """Test that git failures surface as CommandError."""
        git_repo = GitRepository(filtered_repo)
        with pytest.raises(CommandError) as exc_info:
            git_repo.rev_parse("no-such-ref")
        assert exc_info.value.status == 128
        assert exc_info.value.command[:2] == ["git", "rev-parse"]

    def test_ensure_clean_state(self, filtered_repo: Path):
        """Test the clean working directory check."""
        git_repo = GitRepository(filtered_repo)
        git_repo.ensure_clean_state()

        # Untracked files do not count
        (filtered_repo / "notes.txt").write_text("scratch")
        git_repo.ensure_clean_state()

        (filtered_repo / "README.md").write_text("changed")
        with pytest.raises(JoshSyncError, match="working directory must be clean"):
            git_repo.ensure_clean_state()

    def test_commit_only_given_paths(self, filtered_repo: Path):
        """Test that a path-restricted commit leaves other changes alone."""
        git_repo = GitRepository(filtered_repo)
        (filtered_repo / "README.md").write_text("changed")
        (filtered_repo / "rust-version").write_text("abc\n")

        git_repo.stage_files(filtered_repo / "rust-version")
        new_hash = git_repo.commit("Record version", paths=[filtered_repo / "rust-version"], no_verify=True)

        commit = Repo(filtered_repo).commit(new_hash)
        assert list(commit.stats.files) == ["rust-version"]
        with pytest.raises(JoshSyncError):
            git_repo.ensure_clean_state()

    def test_stage_tracked_changes(self, filtered_repo: Path):
        """Test that `add -u` ignores untracked files."""
        git_repo = GitRepository(filtered_repo)
        (filtered_repo / "README.md").write_text("changed")
        (filtered_repo / "untracked.txt").write_text("new")

        git_repo.stage_tracked_changes()
        git_repo.commit("Update readme")

        assert "untracked.txt" in Repo(filtered_repo).untracked_files

    def test_count_root_commits(self, filtered_repo: Path):
        git_repo = GitRepository(filtered_repo)
        assert git_repo.count_root_commits() == 1
        commit_file(Repo(filtered_repo), "a.txt", "a", "Second commit")
        assert git_repo.count_root_commits() == 1

    def test_has_empty_diff(self, filtered_repo: Path):
        git_repo = GitRepository(filtered_repo)
        base = git_repo.get_current_commit()
        assert git_repo.has_empty_diff(base) is True

        (filtered_repo / "README.md").write_text("changed")
        assert git_repo.has_empty_diff(base) is False

    def test_fetch_and_merge(self, temp_dir: Path, filtered_repo: Path, subtree_repo: Path):
        """Test fetching into FETCH_HEAD and merging with a merge commit."""
        incoming = commit_file(Repo(filtered_repo), "b.txt", "b", "Upstream change")
        commit_file(Repo(subtree_repo), "c.txt", "c", "Local change")
        git_repo = GitRepository(subtree_repo)

        git_repo.fetch(str(filtered_repo))
        assert git_repo.rev_parse("FETCH_HEAD") == incoming

        git_repo.merge("FETCH_HEAD", "Merge upstream")
        head = Repo(subtree_repo).head.commit
        assert head.message.strip() == "Merge upstream"
        assert [p.hexsha for p in head.parents][1] == incoming

    def test_ls_remote_head(self, filtered_repo: Path, subtree_repo: Path):
        git_repo = GitRepository(subtree_repo)
        assert git_repo.ls_remote_head(str(filtered_repo)) == Repo(filtered_repo).head.commit.hexsha

    def test_push_refspec(self, temp_dir: Path, filtered_repo: Path):
        bare_path = temp_dir / "bare.git"
        bare_path.mkdir()
        Repo.init(bare_path, bare=True)
        git_repo = GitRepository(filtered_repo)

        git_repo.push(str(bare_path), "HEAD:refs/heads/topic")

        assert Repo(bare_path).commit("topic").hexsha == git_repo.get_current_commit()


class TestResetOnFailure:
    """Tests for the HEAD checkpoint."""

    def test_resets_when_not_disarmed(self, filtered_repo: Path):
        git_repo = GitRepository(filtered_repo)
        checkpoint = git_repo.get_current_commit()

        with pytest.raises(RuntimeError):
            with ResetOnFailure(git_repo, checkpoint):
                commit_file(Repo(filtered_repo), "a.txt", "a", "Throwaway")
                raise RuntimeError("boom")

        assert git_repo.get_current_commit() == checkpoint
        assert not (filtered_repo / "a.txt").exists()

    def test_resets_on_clean_exit(self, filtered_repo: Path):
        git_repo = GitRepository(filtered_repo)
        checkpoint = git_repo.get_current_commit()

        with ResetOnFailure(git_repo, checkpoint):
            commit_file(Repo(filtered_repo), "a.txt", "a", "Throwaway")

        assert git_repo.get_current_commit() == checkpoint

    def test_disarmed_keeps_head(self, filtered_repo: Path):
        git_repo = GitRepository(filtered_repo)
        checkpoint = git_repo.get_current_commit()

        with ResetOnFailure(git_repo, checkpoint) as guard:
            new_hash = commit_file(Repo(filtered_repo), "a.txt", "a", "Keep me")
            guard.disarm()

        assert git_repo.get_current_commit() == new_hash


def test_init_repo_helper(temp_dir: Path):
    """Sanity check for the fixture helper used across tests."""
    repo = init_repo(temp_dir / "fresh")
    assert repo.head.commit.message == "Initial commit"


class TestCloneRepo:
    """Tests for clone_repo."""

    def test_clone(self, temp_dir: Path, filtered_repo: Path):
        cloned = clone_repo(str(filtered_repo), temp_dir / "nested" / "clone")
        assert cloned.path == temp_dir / "nested" / "clone"
        assert cloned.get_current_commit() == Repo(filtered_repo).head.commit.hexsha

    def test_clone_failure(self, temp_dir: Path):
        """Test that a failed clone surfaces as CommandError."""
        with pytest.raises(CommandError) as exc_info:
            clone_repo(str(temp_dir / "missing"), temp_dir / "clone")
        assert exc_info.value.command[:2] == ["git", "clone"]
        assert "--filter=blob:none" in exc_info.value.command
