"""Pytest configuration and fixtures for josh_sync tests."""

import tempfile
from pathlib import Path

import pytest
from git import Repo

from josh_sync.config import JoshConfig, PostPullOperation, SyncContext
from josh_sync.git_ops import GitRepository
from josh_sync.sync import GitSync

UPSTREAM_SHA = "0123456789abcdef0123456789abcdef01234567"


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    """Give every git process in the tests an identity."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.delenv("GITHUB_ACTIONS", raising=False)
    monkeypatch.delenv("JOSH_SYNC_UPSTREAM_GIT", raising=False)
    monkeypatch.delenv("RUSTC_GIT", raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


def init_repo(repo_path: Path, readme: str = "# Repo\n") -> Repo:
    """Initialize a git repo with a single README commit."""
    repo_path.mkdir(parents=True)
    repo = Repo.init(repo_path)

    # Configure git user
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()

    (repo_path / "README.md").write_text(readme)
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")
    return repo


def commit_file(repo: Repo, name: str, content: str, message: str) -> str:
    """Write a file, commit it and return the new commit hash."""
    path = Path(repo.working_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message).hexsha


@pytest.fixture
def filtered_repo(temp_dir: Path) -> Path:
    """Repository standing in for josh's filtered view of the upstream."""
    repo_path = temp_dir / "filtered"
    init_repo(repo_path, "# Book\n")
    return repo_path


@pytest.fixture
def subtree_repo(temp_dir: Path, filtered_repo: Path) -> Path:
    """Subtree repository sharing its history with the filtered upstream."""
    repo_path = temp_dir / "subtree"
    repo = Repo.clone_from(str(filtered_repo), str(repo_path))
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    return repo_path


@pytest.fixture
def github_dir(temp_dir: Path) -> Path:
    """Directory standing in for https://github.com."""
    path = temp_dir / "github"
    path.mkdir()
    return path


class FakeRunningJoshProxy:
    """Serves local repositories instead of filtered views of GitHub."""

    def __init__(self, proxy: "FakeJoshProxy"):
        self.proxy = proxy

    def git_url(self, repo: str, commit: str | None, filter: str) -> str:
        self.proxy.url_requests.append((repo, commit, filter))
        return str(self.proxy.urls[repo])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.proxy.stopped += 1
        return False


class FakeJoshProxy:
    def __init__(self, urls: dict[str, Path]):
        self.urls = urls
        self.url_requests: list[tuple] = []
        self.started = 0
        self.stopped = 0

    def start(self, config: JoshConfig) -> FakeRunningJoshProxy:
        self.started += 1
        return FakeRunningJoshProxy(self)


@pytest.fixture
def proxy(filtered_repo: Path) -> FakeJoshProxy:
    return FakeJoshProxy({"rust-lang/rust": filtered_repo})


@pytest.fixture
def make_sync(subtree_repo: Path, proxy: FakeJoshProxy, github_dir: Path):
    """Build a GitSync for the subtree repo."""

    def _make(
        last_upstream_sha: str | None = None,
        post_pull: list[PostPullOperation] | None = None,
    ) -> GitSync:
        config = JoshConfig(repo="book", path="src/doc/book", post_pull=post_pull or [])
        context = SyncContext(
            config=config,
            last_upstream_sha_path=subtree_repo / "rust-version",
            last_upstream_sha=last_upstream_sha,
        )
        return GitSync(
            context,
            proxy,
            repo=GitRepository(subtree_repo),
            github_url=str(github_dir),
        )

    return _make
