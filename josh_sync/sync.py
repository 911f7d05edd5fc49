"""
Pull and push logic for synchronizing a subtree repository with its upstream.

A pull merges the josh-filtered upstream history into the subtree repository
and records the upstream commit it came from. A push sends the subtree
history back through josh into a branch of the user's upstream fork, based on
exactly the upstream commit that was last pulled.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from .config import PostPullOperation, SyncContext, write_upstream_sha
from .errors import CommandError, JoshSyncError, NothingToPullError, PullFailedError
from .git_ops import GitRepository, ResetOnFailure, clone_repo
from .josh import JoshProxy
from .utils import prompt, run_command

console = Console()

DEFAULT_UPSTREAM_REPO = "rust-lang/rust"
GITHUB_URL = "https://github.com"
TOOL_URL = "https://github.com/rust-lang/josh-sync"

# Environment variables pointing at an existing upstream checkout
UPSTREAM_GIT_ENV_VARS = ("JOSH_SYNC_UPSTREAM_GIT", "RUSTC_GIT")


@dataclass
class PullResult:
    """Result of a successful pull."""

    merge_commit_message: str
    upstream_sha: str
    head: str


class GitSync:
    """Performs pulls and pushes for one subtree repository."""

    def __init__(
        self,
        context: SyncContext,
        proxy: JoshProxy,
        repo: GitRepository | None = None,
        github_url: str = GITHUB_URL,
    ):
        self.context = context
        self.proxy = proxy
        self.repo = repo or GitRepository()
        self.github_url = github_url.rstrip("/")

    @property
    def config(self):
        return self.context.config

    def _upstream_head(self, upstream_repo: str) -> str:
        try:
            return self.repo.ls_remote_head(f"{self.github_url}/{upstream_repo}")
        except CommandError as e:
            raise PullFailedError("cannot fetch upstream commit", details=str(e)) from e

    def pull(
        self,
        upstream_repo: str = DEFAULT_UPSTREAM_REPO,
        upstream_commit: str | None = None,
        allow_noop: bool = False,
    ) -> PullResult:
        """
        Merge upstream changes into the subtree repository.

        Args:
            upstream_repo: `org/name` of the upstream monorepo
            upstream_commit: Upstream commit to pull (defaults to upstream HEAD)
            allow_noop: Keep the merge even if it brings no changes

        Raises:
            NothingToPullError: Upstream has nothing new for this subtree
            PullFailedError: A git operation failed
        """
        # The upstream commit that we want to pull
        upstream_sha = upstream_commit or self._upstream_head(upstream_repo)

        self.repo.ensure_clean_state()

        previous_sha = self.context.last_upstream_sha
        orig_head = self.repo.get_current_commit()
        console.print(f"previous upstream base: {escape(previous_sha or '<none>')}")
        console.print(f"new upstream base: {escape(upstream_sha)}")
        console.print(f"original local HEAD: {orig_head}")

        # Distinguished from failures for tools that do not consider this an error
        if previous_sha is not None and previous_sha == upstream_sha:
            raise NothingToPullError()

        with self.proxy.start(self.config) as josh:
            josh_url = josh.git_url(
                upstream_repo, upstream_sha, self.config.construct_josh_filter()
            )
            with ResetOnFailure(self.repo, orig_head) as checkpoint:
                merge_message = self._pull_with_checkpoint(
                    checkpoint, josh_url, upstream_repo, upstream_sha, allow_noop
                )

        return PullResult(
            merge_commit_message=merge_message,
            upstream_sha=upstream_sha,
            head=self.repo.get_current_commit(),
        )

    def _pull_with_checkpoint(
        self,
        checkpoint: ResetOnFailure,
        josh_url: str,
        upstream_repo: str,
        upstream_sha: str,
        allow_noop: bool,
    ) -> str:
        self._commit_upstream_sha(upstream_repo, upstream_sha)

        try:
            self.repo.fetch(josh_url)
        except CommandError as e:
            raise PullFailedError("cannot fetch git state through Josh", details=str(e)) from e

        # Merging filtered history must not add root commits
        num_roots_before = self.repo.count_root_commits()
        sha_pre_merge = self.repo.get_current_commit()

        # The filtered SHA of upstream
        incoming_ref = self.repo.rev_parse("FETCH_HEAD")
        console.print(f"incoming ref: {incoming_ref}")

        merge_message = self._merge_message(upstream_repo, upstream_sha, incoming_ref)

        try:
            summary = self.repo.merge("FETCH_HEAD", merge_message)
        except CommandError as e:
            if e.stdout:
                console.print(e.stdout, markup=False)
            console.print(
                "[red]The merge was unsuccessful (maybe there was a conflict?).\n"
                "NOT rolling back the branch state, so you can examine it manually.\n"
                "After you fix the conflicts, `git add` the changes and run "
                "`git merge --continue`.[/red]"
            )
            checkpoint.disarm()
            raise PullFailedError(
                "FAILED to merge new commits, something went wrong", details=str(e)
            ) from e
        if summary:
            console.print(summary, markup=False)

        current_sha = self.repo.get_current_commit()
        if current_sha == sha_pre_merge and not allow_noop:
            console.print(
                "[yellow]No merge was performed, no changes to pull were found. "
                "Rolling back.[/yellow]"
            )
            raise NothingToPullError()

        # Upstream may have produced only empty merge commits for this subtree
        if not allow_noop and self.repo.has_empty_diff(sha_pre_merge):
            console.print("[yellow]Only empty changes were pulled. Rolling back.[/yellow]")
            raise NothingToPullError()

        console.print(f"[green]Pull finished! Current HEAD is {current_sha}[/green]")

        if self.config.post_pull:
            console.print("Running post-pull operation(s)")
            for op in self.config.post_pull:
                self.run_post_pull_op(op)

        checkpoint.disarm()

        if self.repo.count_root_commits() != num_roots_before:
            raise PullFailedError(
                "Josh created a new root commit. This is probably not the history you want."
            )
        return merge_message

    def _commit_upstream_sha(self, upstream_repo: str, upstream_sha: str) -> None:
        """Record the new upstream SHA in a separate preparation commit.

        This happens before the merge so that the tracking file is already
        right while resolving merge conflicts. Making it part of the merge
        confuses josh.
        """
        path = self.context.last_upstream_sha_path
        try:
            write_upstream_sha(path, upstream_sha)
        except OSError as e:
            raise PullFailedError(f"cannot write upstream SHA to {path}", details=str(e)) from e

        prep_message = (
            f"Prepare for merging from {upstream_repo}\n\n"
            f"This updates the rust-version file to {upstream_sha}."
        )
        try:
            # Needed on the first sync, when the file is not tracked yet
            self.repo.stage_files(path)
            self.repo.commit(prep_message, paths=[path], no_verify=True)
        except CommandError as e:
            raise PullFailedError("cannot create preparation commit", details=str(e)) from e

    def _merge_message(self, upstream_repo: str, upstream_sha: str, incoming_ref: str) -> str:
        prev_upstream_sha = self.context.last_upstream_sha or upstream_sha
        return (
            f"Merge ref '{upstream_sha[:12]}' from {upstream_repo}\n"
            f"\n"
            f"Pull recent changes from {GITHUB_URL}/{upstream_repo} via Josh.\n"
            f"\n"
            f"Upstream ref: {upstream_sha}\n"
            f"Filtered ref: {incoming_ref}\n"
            f"Upstream diff: {GITHUB_URL}/{upstream_repo}/compare/"
            f"{prev_upstream_sha}...{upstream_sha}\n"
            f"\n"
            f"This merge was created using {TOOL_URL}.\n"
        )

    def run_post_pull_op(self, op: PostPullOperation) -> None:
        """Run `op.cmd` and commit whatever it changed in tracked files."""
        head = self.repo.get_current_commit()
        console.print(f"[dim]+ {escape(' '.join(op.cmd))}[/dim]")
        run_command(op.cmd, cwd=self.repo.path)
        if not self.repo.has_empty_diff(head):
            console.print(
                f"`{escape(' '.join(op.cmd))}` changed something, committing with message "
                f"`{escape(op.commit_message)}`"
            )
            self.repo.stage_tracked_changes()
            self.repo.commit(op.commit_message)

    def push(
        self,
        username: str,
        branch: str,
        upstream_repo: str = DEFAULT_UPSTREAM_REPO,
    ) -> None:
        """
        Push the subtree history into `branch` of the user's upstream fork.

        The branch is first created at the upstream commit that was pulled
        last, so josh can reconstruct the upstream history on top of it.
        """
        self.repo.ensure_clean_state()

        base_upstream_sha = self.context.last_upstream_sha
        if not base_upstream_sha:
            raise JoshSyncError(
                "no upstream commit has been recorded yet",
                remediation=(
                    f"Pull at least once, so that {self.context.last_upstream_sha_path} "
                    "contains the upstream base."
                ),
            )

        upstream_name = upstream_repo.rsplit("/", 1)[-1]
        fork_repo = f"{username}/{upstream_name}"
        fork_url = f"{self.github_url}/{fork_repo}"

        with self.proxy.start(self.config) as josh:
            josh_url = josh.git_url(fork_repo, None, self.config.construct_josh_filter())

            checkout = self.prepare_upstream_checkout(upstream_repo)

            console.print(f"Preparing {escape(fork_url)} (base: {escape(base_upstream_sha)})...")

            if self._branch_exists(checkout, fork_url, branch):
                raise JoshSyncError(
                    f"The branch '{branch}' seems to already exist in '{fork_url}'. "
                    "Please delete it and try again."
                )

            try:
                checkout.fetch(f"{self.github_url}/{upstream_repo}", base_upstream_sha)
            except CommandError as e:
                raise JoshSyncError("cannot download latest upstream SHA", details=str(e)) from e
            try:
                checkout.push(fork_url, f"{base_upstream_sha}:refs/heads/{branch}")
            except CommandError as e:
                raise JoshSyncError("cannot push to your fork", details=str(e)) from e
            console.print()

            console.print("Pushing changes...")
            self.repo.push(josh_url, f"HEAD:{branch}")
            console.print()

            # Round-trip check to make sure the push worked as expected
            self.repo.fetch(josh_url, branch)
            head = self.repo.get_current_commit()
            fetch_head = self.repo.rev_parse("FETCH_HEAD")
            if head != fetch_head:
                raise JoshSyncError(
                    "Josh created a non-roundtrip push! Do NOT merge this upstream!",
                    details=f"Expected {head}, got {fetch_head}.",
                )

        console.print(
            f"[green]Confirmed that the push round-trips back to {escape(self.config.repo)} "
            "properly. Please create an upstream PR.[/green]"
        )

    @staticmethod
    def _branch_exists(checkout: GitRepository, url: str, branch: str) -> bool:
        try:
            checkout.fetch(url, branch)
        except CommandError:
            return False
        return True

    def prepare_upstream_checkout(self, upstream_repo: str) -> GitRepository:
        """Find (or clone) an upstream checkout to prepare the push in."""
        for var in UPSTREAM_GIT_ENV_VARS:
            configured = os.environ.get(var)
            if configured:
                path = Path(configured)
                if not path.is_dir():
                    raise JoshSyncError(
                        f"upstream checkout path must be a directory: {path}",
                        remediation=f"Point {var} at a git checkout of {upstream_repo}.",
                    )
                return GitRepository(path)

        path = Path(f"{upstream_repo.rsplit('/', 1)[-1]}-checkout")
        if not (path / ".git").exists():
            question = (
                f"Path to an upstream checkout is not configured via the "
                f"{UPSTREAM_GIT_ENV_VARS[0]} environment variable, and {path} directory "
                f"was not found. Do you want to download a checkout of {upstream_repo} "
                f"into {path}?"
            )
            # Download git history if we are on CI
            if not prompt(question, True):
                raise JoshSyncError("cannot continue without an upstream checkout")
            console.print(
                f"Cloning {escape(upstream_repo)} into `{escape(str(path))}`. "
                f"Use {UPSTREAM_GIT_ENV_VARS[0]} "
                "environment variable to override the location of the checkout"
            )
            try:
                return clone_repo(f"{self.github_url}/{upstream_repo}", path)
            except CommandError as e:
                raise JoshSyncError(f"cannot clone {upstream_repo}", details=str(e)) from e
        return GitRepository(path)
