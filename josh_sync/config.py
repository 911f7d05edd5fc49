"""
Configuration handling for josh_sync.

Defines the configuration schema and provides methods for loading/saving
the sync configuration from YAML files, plus the plain-text file that
records the last upstream commit pulled into the subtree.
"""

from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigError
from .logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("josh-sync.yaml")
DEFAULT_VERSION_PATH = Path("rust-version")
DEFAULT_ORG = "rust-lang"


class PostPullOperation(BaseModel):
    """Command executed after a pull; any change it makes is committed."""

    # Run e.g. bash if you need something more complicated
    cmd: list[str] = Field(
        ..., min_length=1, description="Command and its arguments"
    )
    commit_message: str = Field(
        ...,
        description="Message of the commit created when `cmd` changed tracked files",
    )


class JoshConfig(BaseModel):
    """Describes which part of the upstream monorepo the subtree mirrors."""

    org: str = Field(
        default=DEFAULT_ORG, description="GitHub organization of the subtree repository"
    )
    repo: str = Field(..., description="Name of the subtree repository")
    # Relative path of the subtree in the upstream, e.g. `src/doc/rustc-dev-guide`
    path: str | None = Field(
        None, description="Path of the subtree inside the upstream repository"
    )
    filter: str | None = Field(
        None, description="Josh filter specification (cannot be used with `path`)"
    )
    post_pull: list[PostPullOperation] = Field(
        default_factory=list,
        description="Operations performed after a successful pull",
    )

    @model_validator(mode="after")
    def _check_path_or_filter(self) -> "JoshConfig":
        if self.path is not None and self.filter is not None:
            raise ValueError("Cannot specify both `path` and `filter`")
        if self.path is None and self.filter is None:
            raise ValueError("Must specify one of `path` and `filter`")
        return self

    def full_repo_name(self) -> str:
        return f"{self.org}/{self.repo}"

    def construct_josh_filter(self) -> str:
        """Josh filter selecting the subtree from the upstream history."""
        if self.path is not None:
            return f":/{self.path}"
        return self.filter

    @classmethod
    def from_yaml(cls, path: Path) -> "JoshConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        data = self.model_dump(mode="json", exclude_none=True)
        if not self.post_pull:
            data.pop("post_pull")
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_config(path: Path) -> JoshConfig:
    """Load and validate the config file, wrapping every failure in ConfigError."""
    try:
        return JoshConfig.from_yaml(path)
    except OSError as e:
        raise ConfigError(f"cannot load config file from {path}", details=str(e)) from e
    except yaml.YAMLError as e:
        raise ConfigError("cannot load config as YAML", details=str(e)) from e
    except ValidationError as e:
        raise ConfigError(f"invalid config file {path}", details=str(e)) from e


def read_upstream_sha(path: Path) -> str | None:
    """Read the last synced upstream SHA, or None if it is not known yet."""
    try:
        sha = Path(path).read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Cannot load %s: %s", path, e)
        return None
    return sha or None


def write_upstream_sha(path: Path, sha: str) -> None:
    Path(path).write_text(f"{sha}\n", encoding="utf-8")


@dataclass
class SyncContext:
    """Everything a sync needs to know about the subtree repository."""

    config: JoshConfig
    last_upstream_sha_path: Path
    last_upstream_sha: str | None = None


def load_context(config_path: Path, version_path: Path) -> SyncContext:
    """Load the config and the tracking file."""
    config = load_config(config_path)
    return SyncContext(
        config=config,
        last_upstream_sha_path=Path(version_path).resolve(),
        last_upstream_sha=read_upstream_sha(version_path),
    )


def create_default_config() -> JoshConfig:
    """Template config written by `init`; the placeholders need editing."""
    return JoshConfig(
        org=DEFAULT_ORG,
        repo="<repository-name>",
        path="<relative-subtree-path>",
    )
