"""
Helpers for opening pull requests after a sync.
"""

import shutil
import subprocess
from urllib.parse import quote

from .errors import CommandError
from .logging_config import get_logger
from .utils import prompt

logger = get_logger(__name__)

PULL_PR_TITLE = "Rustc pull update"


def maybe_create_gh_pr(repo: str, title: str, description: str) -> bool:
    """Offer to open a PR with the `gh` CLI. Returns True if one was created."""
    if shutil.which("gh") is None:
        return False
    if not prompt("Do you want to create a pull PR using the `gh` tool?", False):
        return False

    cmd = ["gh", "pr", "create", "--title", title, "--body", description, "--repo", repo]
    logger.debug("+ %s", " ".join(cmd))
    # Interactive, so output goes straight to the terminal
    status = subprocess.run(cmd).returncode
    if status != 0:
        raise CommandError(cmd, status)
    return True


def push_pr_body(full_repo_name: str) -> str:
    # `subtree update` in the title silences the `no-merges` triagebot check
    return (
        f"Subtree update of https://github.com/{full_repo_name}.\n"
        f"\n"
        f"Created using https://github.com/rust-lang/josh-sync.\n"
        f"\n"
        f"r? @ghost"
    )


def upstream_pr_url(upstream_repo: str, username: str, branch: str, repo: str, body: str) -> str:
    """GitHub URL that opens a pre-filled PR from the pushed fork branch."""
    return (
        f"https://github.com/{upstream_repo}/compare/{username}:{branch}"
        f"?quick_pull=1&title={quote(repo, safe='')}+subtree+update&body={quote(body, safe='')}"
    )
