"""Configuration for the outline knowledge base."""

import os
from dataclasses import dataclass
from pathlib import Path

# Environment variable overriding the default base directory.
BASE_DIR_ENV: str = "OUTLINE_KB_HOME"

# Used when neither an explicit path nor the environment variable is given.
DEFAULT_BASE_DIR: Path = Path("~/.local/share/outline-kb").expanduser()

DATABASE_FILENAME: str = "outline.db"
ATTACHMENTS_DIRNAME: str = "attachments"


def resolve_base_dir(base_dir: str | Path | None = None) -> Path:
    """Pick the base directory: explicit argument, then env var, then default."""
    if base_dir is not None:
        return Path(base_dir).expanduser()
    env_value = os.environ.get(BASE_DIR_ENV)
    if env_value:
        return Path(env_value).expanduser()
    return DEFAULT_BASE_DIR


@dataclass(frozen=True)
class StoreConfig:
    """Locations derived from the single configurable base directory."""

    base_dir: Path

    @classmethod
    def from_base_dir(cls, base_dir: str | Path | None = None) -> "StoreConfig":
        return cls(base_dir=resolve_base_dir(base_dir))

    @property
    def db_path(self) -> Path:
        return self.base_dir / DATABASE_FILENAME

    @property
    def attachments_dir(self) -> Path:
        return self.base_dir / ATTACHMENTS_DIRNAME
