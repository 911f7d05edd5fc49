"""
Git operations for josh_sync.

Provides a wrapper around git operations using GitPython, covering the
fetch/merge/push plumbing that the pull and push flows are built from.
"""

from pathlib import Path

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from rich.console import Console

from .errors import CommandError, JoshSyncError
from .logging_config import get_logger
from .utils import stream_command

console = Console()
logger = get_logger(__name__)


def clone_repo(url: str, path: Path, blobless: bool = True) -> "GitRepository":
    """
    Clone a repository from a URL to a local path.

    Args:
        url: Git remote URL
        path: Local path to clone into
        blobless: Skip downloading file contents until they are needed

    Returns:
        GitRepository wrapper for the cloned repo
    """
    path = Path(path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)

    args = ["git", "clone"]
    if blobless:
        args.append("--filter=blob:none")

    # Let clone progress through to the terminal
    stream_command([*args, url, str(path)])
    return GitRepository(path)


def _command_error(e: GitCommandError) -> CommandError:
    command = e.command if isinstance(e.command, (list, tuple)) else [str(e.command)]
    return CommandError(
        [str(c) for c in command],
        e.status if isinstance(e.status, int) else None,
        _clean(e.stdout),
        _clean(e.stderr),
    )


def _clean(stream: str | None) -> str:
    # GitPython prefixes captured output with "\n  stdout: '"
    if not stream:
        return ""
    text = stream.strip()
    for prefix in ("stdout:", "stderr:"):
        if text.startswith(prefix):
            text = text[len(prefix) :].strip().strip("'")
    return text


class GitRepository:
    """Wrapper around a git working copy for sync operations."""

    def __init__(self, path: Path | None = None):
        """Initialize repository wrapper (defaults to the current directory)."""
        self.path = Path(path or Path.cwd()).resolve()
        try:
            self.repo = Repo(self.path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise JoshSyncError(
                f"Not a valid git repository: {self.path}",
                remediation="Run josh-sync from inside the subtree repository.",
            ) from e
        self.path = Path(self.repo.working_dir)

    def git(self, *args: str) -> str:
        """Run a git subcommand in this repository and return its stdout."""
        logger.debug("+ git %s", " ".join(args))
        try:
            return self.repo.git.execute(["git", *args])
        except GitCommandError as e:
            raise _command_error(e) from e

    def get_current_commit(self) -> str:
        """Get the current HEAD commit hash."""
        return self.rev_parse("HEAD")

    def rev_parse(self, rev: str) -> str:
        return self.git("rev-parse", rev).strip()

    def ensure_clean_state(self) -> None:
        """Fail if there are tracked files that need to be checked in."""
        status = self.git("status", "--untracked-files=no", "--porcelain")
        if status.strip():
            raise JoshSyncError(
                "working directory must be clean",
                remediation="Commit or stash your changes first.",
                details=status,
            )

    def stage_files(self, *file_paths: str | Path) -> None:
        """Stage files for commit."""
        if file_paths:
            self.git("add", *[str(p) for p in file_paths])

    def stage_tracked_changes(self) -> None:
        """Stage modifications and deletions of tracked files (`git add -u`)."""
        self.git("add", "-u")

    def commit(
        self,
        message: str,
        paths: list[str | Path] | None = None,
        no_verify: bool = False,
    ) -> str:
        """Create a commit, optionally restricted to `paths`, and return its hash."""
        cmd_args = ["commit", *[str(p) for p in paths or []]]
        if no_verify:
            cmd_args.append("--no-verify")
        cmd_args.extend(["-m", message])
        self.git(*cmd_args)
        return self.get_current_commit()

    def fetch(self, url: str, *refspecs: str) -> str:
        """Fetch from a URL; the fetched tip ends up in FETCH_HEAD."""
        return self.git("fetch", url, *refspecs)

    def merge(self, rev: str, message: str) -> str:
        """Merge `rev` into HEAD with a merge commit; returns git's summary output."""
        return self.git("merge", rev, "--no-verify", "--no-ff", "-m", message)

    def reset_hard(self, rev: str) -> None:
        self.git("reset", "--hard", rev)

    def push(self, url: str, refspec: str) -> None:
        """Push a refspec to a URL."""
        self.git("push", url, refspec)

    def ls_remote_head(self, url: str) -> str:
        """Get the commit the remote HEAD points to."""
        out = self.git("ls-remote", url, "HEAD")
        fields = out.split()
        if not fields:
            raise JoshSyncError(f"Could not obtain HEAD of {url} from remote: '{out}'")
        return fields[0]

    def count_root_commits(self) -> int:
        """Number of commits without parents reachable from HEAD."""
        out = self.git("rev-list", "HEAD", "--max-parents=0", "--count")
        return int(out.strip())

    def has_empty_diff(self, baseline: str) -> bool:
        """Check whether the working tree is identical to `baseline`."""
        # `git diff --exit-code` succeeds only if the diff is empty
        try:
            self.git("diff", "--exit-code", baseline)
        except CommandError:
            return False
        return True


class ResetOnFailure:
    """Restores HEAD to `reset_to` on exit, unless `disarm` was called first."""

    def __init__(self, repo: GitRepository, reset_to: str):
        self.repo = repo
        self.reset_to = reset_to
        self.disarmed = False

    def disarm(self) -> None:
        self.disarmed = True

    def __enter__(self) -> "ResetOnFailure":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.disarmed:
            console.print(f"[yellow]Reverting HEAD to {self.reset_to}[/yellow]")
            self.repo.reset_hard(self.reset_to)
        return False
