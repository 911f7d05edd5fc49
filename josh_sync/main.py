"""
CLI entry point for josh_sync.

Provides command-line interface for pulling upstream changes into a subtree
repository and pushing subtree changes back upstream.
"""

from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from .config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_VERSION_PATH,
    SyncContext,
    create_default_config,
    load_context,
)
from .errors import JoshSyncError, NothingToPullError
from .github import PULL_PR_TITLE, maybe_create_gh_pr, push_pr_body, upstream_pr_url
from .josh import JoshProxy, try_install_josh
from .logging_config import setup_logging
from .sync import DEFAULT_UPSTREAM_REPO, GitSync
from .utils import prompt

console = Console()

# Exit code of `pull` when upstream has nothing new; CI treats it as "skipped"
EXIT_NOTHING_TO_PULL = 2

config_option = click.option(
    "--config-path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_CONFIG_PATH,
    show_default=True,
    help="Path to the sync configuration file",
)
version_path_option = click.option(
    "--version-path",
    "--rust-version-path",
    "version_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_VERSION_PATH,
    show_default=True,
    help="File recording the last upstream commit that was pulled",
)
upstream_option = click.option(
    "--upstream-repo",
    default=DEFAULT_UPSTREAM_REPO,
    show_default=True,
    help="GitHub `org/name` of the upstream monorepo",
)


def fail(error: JoshSyncError, prefix: str = "Error") -> None:
    console.print(f"[red]{prefix}: {escape(error.message)}[/red]")
    if error.details:
        console.print(f"[dim]{escape(error.details)}[/dim]")
    if error.remediation:
        console.print(f"To fix: {escape(error.remediation)}")
    raise SystemExit(1)


def get_josh_proxy(install: bool) -> JoshProxy:
    """Find josh-proxy, installing or updating it to the pinned version if asked to."""
    if install:
        console.print("Updating/installing josh-proxy binary...")
        proxy = try_install_josh()
        if proxy is None:
            raise JoshSyncError("Could not install josh-proxy")
        return proxy

    proxy = JoshProxy.lookup()
    if proxy is not None:
        return proxy
    if not prompt("josh-proxy not found. Do you want to install it?", False):
        raise JoshSyncError(
            "josh-proxy could not be found",
            remediation="Install it or rerun with --install-josh.",
        )
    return get_josh_proxy(install=True)


def _load(config_path: Path, version_path: Path) -> SyncContext:
    try:
        return load_context(config_path, version_path)
    except JoshSyncError as e:
        fail(e)


@click.group()
@click.version_option(package_name="josh-sync")
@click.option("--verbose", "-v", is_flag=True, help="Print external commands before running them")
def cli(verbose: bool):
    """Josh Sync - Synchronize a subtree repository with its upstream monorepo."""
    setup_logging(verbose)


@cli.command()
def init():
    """Initialize a config file and an empty rust-version file for this repository."""
    config = create_default_config()
    config.to_yaml(DEFAULT_CONFIG_PATH)
    console.print(f"[green]Created config file at {DEFAULT_CONFIG_PATH}[/green]")

    if not DEFAULT_VERSION_PATH.is_file():
        DEFAULT_VERSION_PATH.write_text("")
        console.print(f"[green]Created empty rust-version file at {DEFAULT_VERSION_PATH}[/green]")
    else:
        console.print(f"{DEFAULT_VERSION_PATH} already exists, not doing anything with it")
    console.print("\nEdit the config file to point at your subtree.")


@cli.command()
@config_option
@version_path_option
@upstream_option
@click.option(
    "--upstream-commit",
    default=None,
    help="Upstream commit to pull (defaults to the upstream HEAD)",
)
@click.option(
    "--allow-noop",
    is_flag=True,
    help="Keep the merge even if it does not change anything",
)
@click.option(
    "--install-josh/--no-install-josh",
    default=True,
    show_default=True,
    help="Install or update josh-proxy before pulling",
)
def pull(
    config_path: Path,
    version_path: Path,
    upstream_repo: str,
    upstream_commit: str | None,
    allow_noop: bool,
    install_josh: bool,
):
    """Pull changes from the upstream monorepo.

    This creates new commits that should then be merged into this subtree
    repository. Exits with status 2 when there is nothing to pull.
    """
    ctx = _load(config_path, version_path)

    try:
        proxy = get_josh_proxy(install_josh)
        result = GitSync(ctx, proxy).pull(upstream_repo, upstream_commit, allow_noop)
    except NothingToPullError:
        console.print("[yellow]Nothing to pull[/yellow]")
        raise SystemExit(EXIT_NOTHING_TO_PULL)
    except JoshSyncError as e:
        fail(e, "Pull failure")

    try:
        created = maybe_create_gh_pr(
            ctx.config.full_repo_name(), PULL_PR_TITLE, result.merge_commit_message
        )
    except JoshSyncError as e:
        fail(e)
    if not created:
        console.print(
            f"Now push the current branch to {escape(ctx.config.repo)} "
            "(either a fork or the main repo) and create a PR"
        )


@cli.command()
@config_option
@version_path_option
@upstream_option
@click.option(
    "--install-josh/--no-install-josh",
    default=True,
    show_default=True,
    help="Install or update josh-proxy before pushing",
)
@click.argument("branch")
@click.argument("username")
def push(
    config_path: Path,
    version_path: Path,
    upstream_repo: str,
    install_josh: bool,
    branch: str,
    username: str,
):
    """Push changes into BRANCH of the upstream fork owned by GitHub USERNAME.

    The pushed branch should then be merged into the upstream repository.
    """
    ctx = _load(config_path, version_path)

    try:
        proxy = get_josh_proxy(install_josh)
        GitSync(ctx, proxy).push(username, branch, upstream_repo)
    except JoshSyncError as e:
        fail(e, "cannot perform push")

    body = push_pr_body(ctx.config.full_repo_name())
    console.print("You can create the upstream PR using the following URL:")
    console.print(
        upstream_pr_url(upstream_repo, username, branch, ctx.config.repo, body),
        soft_wrap=True,
        markup=False,
    )


@cli.command()
@config_option
@version_path_option
def status(config_path: Path, version_path: Path):
    """Show the sync configuration and the last synced upstream commit."""
    ctx = _load(config_path, version_path)
    config = ctx.config

    console.print("\n[bold]Josh Sync Status[/bold]\n")
    console.print(f"  Subtree repo: {escape(config.full_repo_name())}")
    if config.path is not None:
        console.print(f"  Path: {escape(config.path)}")
    console.print(f"  Josh filter: {escape(config.construct_josh_filter())}")
    console.print(f"  Tracking file: {escape(str(ctx.last_upstream_sha_path))}")
    console.print(f"  Last upstream commit: {escape(ctx.last_upstream_sha or 'Never')}")
    if config.post_pull:
        console.print(f"  Post-pull operations: {len(config.post_pull)}")
        for op in config.post_pull:
            console.print(f"    • {escape(' '.join(op.cmd))}")


if __name__ == "__main__":
    cli()
