"""
Management of the josh-proxy process that computes filtered history.

josh-proxy serves filtered views of GitHub repositories over HTTP; we start
it on a fixed local port for the duration of a sync and stop it afterwards.
"""

import shutil
import signal
import socket
import subprocess
import sys
import time
from pathlib import Path

from rich.console import Console

from .config import JoshConfig
from .errors import JoshSyncError
from .logging_config import get_logger
from .utils import run_command

console = Console()
logger = get_logger(__name__)

JOSH_PORT = 42042
# Version of josh-proxy that is installed for the user
JOSH_VERSION = "r24.10.04"
JOSH_GIT_URL = "https://github.com/josh-project/josh"
JOSH_REMOTE = "https://github.com"

DEFAULT_CACHE_DIR = Path.home() / ".josh_sync" / "cache"


def wait_for_port(port: int, attempts: int = 100, interval: float = 0.01) -> bool:
    """Poll a local TCP port until it accepts connections."""
    for _ in range(attempts):
        try:
            # Generally fails immediately while the port is still closed
            with socket.create_connection(("127.0.0.1", port), timeout=0.001):
                return True
        except OSError:
            time.sleep(interval)
    return False


class JoshProxy:
    """An installed josh-proxy binary."""

    # Port polls before giving up, 10ms apart
    start_attempts = 100

    def __init__(self, path: Path, port: int = JOSH_PORT, cache_dir: Path = DEFAULT_CACHE_DIR):
        self.path = Path(path)
        self.port = port
        self.cache_dir = cache_dir

    @classmethod
    def lookup(cls) -> "JoshProxy | None":
        """Try to figure out if josh-proxy is installed."""
        path = shutil.which("josh-proxy")
        return cls(Path(path)) if path else None

    def cache_dir_for(self, config: JoshConfig) -> Path:
        return self.cache_dir / config.org / config.repo

    def start(self, config: JoshConfig) -> "RunningJoshProxy":
        """Start josh-proxy with its output silenced and wait until it listens."""
        local_dir = self.cache_dir_for(config)
        local_dir.mkdir(parents=True, exist_ok=True)
        cmd = [
            str(self.path),
            "--local",
            str(local_dir),
            f"--remote={JOSH_REMOTE}",
            f"--port={self.port}",
            "--no-background",
        ]
        logger.debug("+ %s", " ".join(cmd))
        try:
            process = subprocess.Popen(
                cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as e:
            raise JoshSyncError(
                "failed to start josh-proxy",
                remediation="Make sure josh-proxy is installed.",
                details=str(e),
            ) from e

        running = RunningJoshProxy(process, self.port)
        if not wait_for_port(self.port, attempts=self.start_attempts):
            running.stop()
            raise JoshSyncError("josh-proxy is still not available after waiting for it to start.")
        console.print("[dim]josh up and running[/dim]")
        return running


def try_install_josh() -> JoshProxy | None:
    """Install (or update) josh-proxy, to make sure that we use the pinned version."""
    run_command(
        [
            "cargo",
            "install",
            "--locked",
            "--git",
            JOSH_GIT_URL,
            "--tag",
            JOSH_VERSION,
            "josh-proxy",
        ]
    )
    return JoshProxy.lookup()


class RunningJoshProxy:
    """A running josh-proxy instance; stopped when the `with` block ends."""

    def __init__(self, process: subprocess.Popen, port: int):
        self.process = process
        self.port = port

    def git_url(self, repo: str, commit: str | None, filter: str) -> str:
        """URL serving `repo` (optionally at `commit`) filtered through `filter`."""
        commit_part = f"@{commit}" if commit else ""
        return f"http://localhost:{self.port}/{repo}.git{commit_part}{filter}.git"

    def stop(self) -> None:
        if self.process.poll() is not None:
            return
        if sys.platform != "win32":
            # Try to shut it down gracefully first
            self.process.send_signal(signal.SIGINT)
            try:
                self.process.wait(timeout=0.1)
            except subprocess.TimeoutExpired:
                logger.debug("josh-proxy is still running after SIGINT")
            else:
                return
        console.print(
            "[yellow]I have to kill josh-proxy the hard way, let's hope this does not "
            "break anything.[/yellow]"
        )
        self.process.kill()
        self.process.wait()

    def __enter__(self) -> "RunningJoshProxy":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.stop()
        return False
