"""Configuration module for readlist-vault."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from readlist_vault import __version__
from readlist_vault.models.schema import (
    ConflictPolicy,
    FolderLayout,
    SyncConfig,
    SyncDirection,
    TemplateKind,
)

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the database and logs
_USER_ENV = Path.home() / ".readlist" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class ReadlistConfig(BaseModel):
    """Process settings for the readlist-vault server."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("READLIST_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("READLIST_DATABASE_PATH", "data/db/readlist.db")
        )
    )
    # Vault defaults (optional). Without a vault path the sync tools stay
    # unconfigured until a client calls rl_vault_configure.
    vault_path: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("READLIST_VAULT_PATH"))
            if os.getenv("READLIST_VAULT_PATH")
            else None
        )
    )
    vault_folder: str = Field(
        default_factory=lambda: os.getenv("READLIST_VAULT_FOLDER", "Reading List")
    )
    vault_layout: str = Field(
        default_factory=lambda: os.getenv("READLIST_VAULT_LAYOUT", "by-date")
    )
    vault_template: str = Field(
        default_factory=lambda: os.getenv("READLIST_VAULT_TEMPLATE", "default")
    )
    sync_direction: str = Field(
        default_factory=lambda: os.getenv("READLIST_SYNC_DIRECTION", "both")
    )
    conflict_policy: str = Field(
        default_factory=lambda: os.getenv("READLIST_CONFLICT_POLICY", "vault-wins")
    )
    backup_before_sync: bool = Field(
        default_factory=lambda: _env_flag("READLIST_BACKUP_BEFORE_SYNC", "true")
    )
    # Number of backup files kept per vault (0 keeps all)
    max_backups: int = Field(
        default_factory=lambda: int(os.getenv("READLIST_MAX_BACKUPS", "10"))
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("READLIST_SERVER_NAME", "readlist-vault"))
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_vault_settings(self) -> "ReadlistConfig":
        """Reject unknown enum spellings early so the server fails at startup."""
        FolderLayout(self.vault_layout)
        TemplateKind(self.vault_template)
        SyncDirection(self.sync_direction)
        if ConflictPolicy.parse(self.conflict_policy) is None:
            logger.warning(
                "Unknown conflict policy '%s'; conflicts will need manual resolution",
                self.conflict_policy,
            )
        if self.max_backups < 0:
            raise ValueError("max_backups must be >= 0")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def default_sync_config(self) -> Optional[SyncConfig]:
        """Build the vault settings from the environment.

        Returns None when no vault path is configured.
        """
        if self.vault_path is None:
            return None
        return SyncConfig(
            vault_path=self.get_absolute_path(self.vault_path),
            folder=self.vault_folder,
            layout=self.vault_layout,
            template=self.vault_template,
            direction=self.sync_direction,
            conflict_policy=ConflictPolicy.parse(self.conflict_policy)
            or ConflictPolicy.MANUAL,
            backup_before_sync=self.backup_before_sync,
        )


# Create a global config instance
config = ReadlistConfig()
