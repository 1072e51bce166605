"""MCP server exposing reading-list records and vault sync."""

import atexit
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError as PydanticValidationError

from readlist_vault.backup import VaultBackupManager
from readlist_vault.config import config
from readlist_vault.exceptions import ConfigurationError, ErrorCode, ReadlistError
from readlist_vault.models.schema import (
    PassReport,
    Record,
    ResolutionOutcome,
    SyncConfig,
    SyncReport,
)
from readlist_vault.observability import timed_operation
from readlist_vault.services.sync_service import SyncService
from readlist_vault.storage.record_repository import RecordRepository

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 5_000_000  # 5 MB of extracted HTML

SYNC_TYPES = ("export", "import", "full")


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise ValueError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _format_pass(report: PassReport) -> List[str]:
    lines = [
        f"{report.direction.capitalize()}: {report.synced} synced, "
        f"{report.failed} failed, {report.conflicts} conflicts, "
        f"{report.skipped} skipped, {report.orphaned} orphaned"
        + (" (cancelled)" if report.cancelled else "")
    ]
    for item in report.details:
        if item.success:
            continue
        target = item.file or item.title or f"record {item.record_id}"
        reason = f": {item.reason}" if item.reason else ""
        lines.append(f"  - [{item.action.value}] {target}{reason}")
    return lines


def _format_resolutions(outcomes: List[ResolutionOutcome]) -> List[str]:
    lines = []
    for outcome in outcomes:
        if outcome.success:
            updates = f" ({', '.join(outcome.changed_fields)})" if outcome.changed_fields else ""
            lines.append(
                f"  - record {outcome.record_id}: resolved with {outcome.policy}{updates}"
            )
        else:
            lines.append(
                f"  - record {outcome.record_id}: unresolved ({outcome.reason})"
            )
    return lines


def _format_sync_report(report: SyncReport) -> str:
    lines = ["Vault sync complete."]
    if report.backup_path:
        lines.append(f"Backup: {report.backup_path}")
    if report.export_report:
        lines.extend(_format_pass(report.export_report))
    if report.import_report:
        lines.extend(_format_pass(report.import_report))
    if report.total_conflicts:
        lines.append(f"Conflicts found: {report.total_conflicts}")
        lines.extend(_format_resolutions(report.resolutions))
    if report.cancelled:
        lines.append("Sync was cancelled before finishing.")
    return "\n".join(lines)


def _format_config(sync_config: SyncConfig) -> str:
    return "\n".join([
        "Vault configuration:",
        f"  vault_path: {sync_config.vault_path}",
        f"  folder: {sync_config.folder}",
        f"  layout: {sync_config.layout.value}",
        f"  template: {sync_config.template.value}",
        f"  direction: {sync_config.direction.value}",
        f"  conflict_policy: {sync_config.conflict_policy.value}",
        f"  backup_before_sync: {sync_config.backup_before_sync}",
    ])


class ReadlistMcpServer:
    """MCP server for the reading list and its vault mirror."""

    def __init__(self, engine=None, sync_config: Optional[SyncConfig] = None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine. When None, the
                repository opens the configured database.
            sync_config: Vault settings. Defaults to the settings from the
                environment; without a vault path the sync tools report
                that the vault is not configured.
        """
        self.mcp = FastMCP(config.server_name, version=config.server_version)
        self.repository = RecordRepository(engine=engine)
        self.backup_manager = VaultBackupManager(max_backups=config.max_backups)
        self.sync_service: Optional[SyncService] = None

        sync_config = sync_config or config.default_sync_config()
        if sync_config is not None:
            self.sync_service = SyncService(
                self.repository, sync_config, backup_manager=self.backup_manager
            )

        atexit.register(self._shutdown)
        self._register_tools()
        logger.info(
            "Readlist MCP server initialized"
            + (f" (vault: {sync_config.vault_path})" if sync_config else " (no vault configured)")
        )

    def _shutdown(self) -> None:
        """Clean up resources on server exit."""
        if self.sync_service is not None:
            self.sync_service.cancel()
        self.repository.dispose()

    def _require_sync(self) -> SyncService:
        if self.sync_service is None:
            raise ConfigurationError(
                "Vault is not configured. Call rl_vault_configure with a vault_path first.",
                config_key="vault_path",
                code=ErrorCode.SYNC_NOT_CONFIGURED,
            )
        return self.sync_service

    def configure_vault(self, settings: Dict[str, Any]) -> SyncConfig:
        """Create the sync service or update its settings.

        Raises:
            ConfigurationError: If the settings are invalid.
        """
        if self.sync_service is not None:
            return self.sync_service.update_config(settings)
        try:
            sync_config = SyncConfig.model_validate(settings)
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ConfigurationError(
                f"Invalid vault configuration: {first.get('msg', e)}",
                config_key=".".join(str(part) for part in first.get("loc", ())) or None,
            ) from e
        self.sync_service = SyncService(
            self.repository, sync_config, backup_manager=self.backup_manager
        )
        logger.info(f"Vault configured: {sync_config.vault_path}")
        return sync_config.model_copy()

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Args:
            error: The exception that occurred

        Returns:
            Formatted error message with appropriate level of detail
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, ReadlistError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            # Log full detail but return generic ref to avoid leaking internals
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        elif isinstance(error, OSError):
            logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: A file system error occurred (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="rl_add_record")
        def rl_add_record(
            url: str,
            title: str,
            content: str = "",
            excerpt: Optional[str] = None,
            author: Optional[str] = None,
            tags: Optional[str] = None,
            notes: Optional[str] = None,
        ) -> str:
            """Save an article to the reading list.
            Args:
                url: Source URL of the article
                title: Article title
                content: Extracted article HTML (optional)
                excerpt: Short summary (optional)
                author: Author name (optional)
                tags: Comma-separated list of tags (optional)
                notes: Initial reader notes (optional)
            """
            with timed_operation("rl_add_record", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    tag_list = []
                    if tags:
                        tag_list = [t.strip() for t in tags.split(",") if t.strip()]
                    word_count = len(content.split()) if content else None
                    record = self.repository.create(
                        Record(
                            url=url,
                            title=title,
                            content=content,
                            excerpt=excerpt,
                            author=author,
                            domain=urlparse(url).hostname,
                            word_count=word_count,
                            # 200 words per minute
                            reading_time=max(1, round(word_count / 200)) if word_count else None,
                            tags=tag_list,
                            notes=notes,
                        )
                    )
                    op["record_id"] = record.id
                    return f"Record created successfully with ID: {record.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_configure")
        def rl_vault_configure(
            vault_path: Optional[str] = None,
            folder: Optional[str] = None,
            layout: Optional[str] = None,
            template: Optional[str] = None,
            direction: Optional[str] = None,
            conflict_policy: Optional[str] = None,
            backup_before_sync: Optional[bool] = None,
        ) -> str:
            """Configure the Markdown vault mirror. Only the given settings change.
            Args:
                vault_path: Root directory of the vault (required the first time)
                folder: Sub-folder for exported records (default "Reading List")
                layout: by-date, by-domain or flat
                template: minimal, default or detailed
                direction: export-only, import-only or both
                conflict_policy: vault-wins, record-wins, merge or manual
                backup_before_sync: Write a JSON snapshot before each full sync
            """
            with timed_operation("rl_vault_configure"):
                try:
                    settings = {
                        key: value
                        for key, value in {
                            "vault_path": vault_path,
                            "folder": folder,
                            "layout": layout,
                            "template": template,
                            "direction": direction,
                            "conflict_policy": conflict_policy,
                            "backup_before_sync": backup_before_sync,
                        }.items()
                        if value is not None
                    }
                    sync_config = self.configure_vault(settings)
                    return "Vault configured.\n" + _format_config(sync_config)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_config")
        def rl_vault_config() -> str:
            """Show the current vault configuration."""
            with timed_operation("rl_vault_config"):
                try:
                    return _format_config(self._require_sync().get_config())
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_sync")
        def rl_vault_sync(type: str = "full") -> str:
            """Synchronize the reading list with the vault.
            Args:
                type: "export" (records to vault), "import" (vault edits to
                    records) or "full" (backup, both directions, resolve conflicts)
            """
            with timed_operation("rl_vault_sync", type=type) as op:
                try:
                    sync_type = type.strip().lower()
                    if sync_type not in SYNC_TYPES:
                        return (
                            f"Invalid sync type: {type}. "
                            f"Valid types are: {', '.join(SYNC_TYPES)}"
                        )
                    service = self._require_sync()
                    if sync_type == "export":
                        report = service.export_pass()
                        op["synced"] = report.synced
                        return "\n".join(_format_pass(report))
                    if sync_type == "import":
                        report = service.import_pass()
                        op["synced"] = report.synced
                        return "\n".join(_format_pass(report))
                    full_report = service.full_sync()
                    op["conflicts"] = full_report.total_conflicts
                    return _format_sync_report(full_report)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_resolve")
        def rl_vault_resolve(policy: Optional[str] = None) -> str:
            """Resolve open conflicts from the last import.
            Args:
                policy: vault-wins, record-wins or merge. Defaults to the
                    configured policy; "manual" leaves conflicts open.
            """
            with timed_operation("rl_vault_resolve", policy=policy) as op:
                try:
                    outcomes = self._require_sync().resolve_queued_conflicts(policy)
                    if not outcomes:
                        return "No open conflicts."
                    resolved = sum(1 for o in outcomes if o.success)
                    op["resolved"] = resolved
                    return "\n".join(
                        [f"Resolved {resolved} of {len(outcomes)} conflict(s):"]
                        + _format_resolutions(outcomes)
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_conflicts")
        def rl_vault_conflicts() -> str:
            """List open conflicts between records and vault files."""
            with timed_operation("rl_vault_conflicts"):
                try:
                    conflicts = self._require_sync().get_conflicts()
                    if not conflicts:
                        return "No open conflicts."
                    lines = [f"{len(conflicts)} open conflict(s):"]
                    for conflict in conflicts:
                        lines.append(
                            f"  - record {conflict.record_id}: {conflict.vault_file} "
                            f"(fields: {', '.join(conflict.fields)})"
                        )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_status")
        def rl_vault_status() -> str:
            """Show how many records are mirrored in the vault."""
            with timed_operation("rl_vault_status"):
                try:
                    status = self._require_sync().get_status()
                    last_sync = status.last_sync.isoformat() if status.last_sync else "never"
                    return "\n".join([
                        "Vault sync status:",
                        f"  records: {status.total_records}",
                        f"  synced: {status.synced_records}",
                        f"  unsynced: {status.unsynced_records}",
                        f"  last sync: {last_sync}",
                        f"  direction: {status.direction.value}",
                        f"  conflict policy: {status.conflict_policy.value}",
                        f"  open conflicts: {status.active_conflicts}",
                        f"  state: {status.state.value}",
                    ])
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="rl_vault_backups")
        def rl_vault_backups(create: bool = False) -> str:
            """List record snapshots in the vault, optionally writing a new one.
            Args:
                create: Write a new snapshot before listing
            """
            with timed_operation("rl_vault_backups", create=create):
                try:
                    service = self._require_sync()
                    lines = []
                    if create:
                        lines.append(f"Backup created: {service.create_backup()}")
                    backups = service.list_backups()
                    if not backups:
                        lines.append("No backups found.")
                    else:
                        lines.append(f"{len(backups)} backup(s):")
                        for backup in backups:
                            lines.append(
                                f"  - {backup['name']} ({backup['size_bytes']} bytes, "
                                f"{backup['created_at']})"
                            )
                    return "\n".join(lines)
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
