"""Tests for the MCP server tools."""
from unittest.mock import MagicMock, patch

import pytest

from readlist_vault.exceptions import SyncError, ErrorCode
from readlist_vault.models.schema import SyncConfig
from readlist_vault.server.mcp_server import ReadlistMcpServer
from tests.fakes import edit_document, touch_relative


class TestMcpServer:
    """Tests for the ReadlistMcpServer class."""

    @pytest.fixture(autouse=True)
    def server_factory(self, engine, vault_dir, monkeypatch):
        self.registered_tools = {}
        self.mock_mcp = MagicMock()

        # Capture tool functions as the server registers them
        def mock_tool_decorator(*args, **kwargs):
            def tool_wrapper(func):
                self.registered_tools[kwargs.get("name")] = func
                return func
            return tool_wrapper

        self.mock_mcp.tool = mock_tool_decorator
        self.vault_dir = vault_dir
        self.engine = engine
        # Keep the environment's vault out of these tests
        monkeypatch.setattr(
            "readlist_vault.server.mcp_server.config.vault_path", None
        )

        patcher = patch(
            "readlist_vault.server.mcp_server.FastMCP", return_value=self.mock_mcp
        )
        patcher.start()
        yield
        patcher.stop()

    def _server(self, configured=True):
        sync_config = None
        if configured:
            sync_config = SyncConfig(
                vault_path=self.vault_dir, layout="flat", backup_before_sync=False
            )
        return ReadlistMcpServer(engine=self.engine, sync_config=sync_config)

    def _add(self, url="https://example.com/a", title="First", **kwargs):
        return self.registered_tools["rl_add_record"](url=url, title=title, **kwargs)

    def test_all_tools_registered(self):
        self._server()
        assert set(self.registered_tools) == {
            "rl_add_record",
            "rl_vault_configure",
            "rl_vault_config",
            "rl_vault_sync",
            "rl_vault_resolve",
            "rl_vault_conflicts",
            "rl_vault_status",
            "rl_vault_backups",
        }

    def test_add_record(self):
        server = self._server()
        result = self._add(content="<p>one two three</p>", tags="a, b")
        assert "Record created successfully with ID:" in result

        (record,) = server.repository.fetch_all()
        assert record.domain == "example.com"
        assert record.tags == ["a", "b"]
        assert record.word_count == 3
        assert record.reading_time == 1

    def test_add_duplicate_record(self):
        self._server()
        self._add()
        assert self._add() == "Error: A record for 'https://example.com/a' already exists"

    def test_add_record_title_too_long(self):
        self._server()
        result = self._add(title="x" * 600)
        assert result.startswith("Error: Invalid input (ref: ")

    def test_tools_require_vault(self):
        self._server(configured=False)
        for name in ("rl_vault_config", "rl_vault_status", "rl_vault_conflicts"):
            assert self.registered_tools[name]().startswith("Error: Vault is not configured")
        assert self.registered_tools["rl_vault_sync"]().startswith(
            "Error: Vault is not configured"
        )

    def test_configure_creates_sync_service(self):
        server = self._server(configured=False)
        result = self.registered_tools["rl_vault_configure"](
            vault_path=str(self.vault_dir), layout="flat", conflict_policy="merge"
        )
        assert result.startswith("Vault configured.")
        assert "layout: flat" in result
        assert "conflict_policy: merge" in result
        assert server.sync_service is not None

    def test_configure_partial_update(self):
        self._server()
        result = self.registered_tools["rl_vault_configure"](template="detailed")
        assert "template: detailed" in result
        assert "layout: flat" in result
        assert "template: detailed" in self.registered_tools["rl_vault_config"]()

    def test_configure_invalid(self):
        self._server()
        result = self.registered_tools["rl_vault_configure"](layout="spiral")
        assert result.startswith("Error: Invalid vault configuration")

    def test_configure_without_vault_path(self):
        self._server(configured=False)
        result = self.registered_tools["rl_vault_configure"](folder="Inbox")
        assert result.startswith("Error: Invalid vault configuration")

    def test_sync_export_and_import(self):
        self._server()
        self._add()
        self._add(url="https://example.com/b", title="Second")

        export = self.registered_tools["rl_vault_sync"](type="export")
        assert export.startswith("Export: 2 synced, 0 failed")
        assert (self.vault_dir / "Reading List" / "First.md").exists()

        imported = self.registered_tools["rl_vault_sync"](type="import")
        assert imported.startswith("Import: 2 synced, 0 failed, 0 conflicts")

    def test_sync_full(self):
        self._server()
        self._add()
        result = self.registered_tools["rl_vault_sync"]()
        assert result.startswith("Vault sync complete.")
        assert "Export: 1 synced" in result

    def test_sync_invalid_type(self):
        self._server()
        result = self.registered_tools["rl_vault_sync"](type="sideways")
        assert result.startswith("Invalid sync type: sideways")

    def test_sync_in_progress_is_reported(self):
        server = self._server()
        server.sync_service.full_sync = MagicMock(
            side_effect=SyncError("A sync is already in progress", code=ErrorCode.SYNC_IN_PROGRESS)
        )
        assert self.registered_tools["rl_vault_sync"]() == "Error: A sync is already in progress"

    def test_conflicts_and_resolve(self):
        server = self._server()
        self._add(notes="app notes")
        self.registered_tools["rl_vault_sync"](type="export")
        (record,) = server.repository.fetch_all()
        path = self.vault_dir / record.vault_path
        edit_document(path, notes="vault notes")
        touch_relative(path, record.updated_at, 60)

        imported = self.registered_tools["rl_vault_sync"](type="import")
        assert "1 conflicts" in imported

        listing = self.registered_tools["rl_vault_conflicts"]()
        assert listing.startswith("1 open conflict(s):")
        assert "fields: notes" in listing

        declined = self.registered_tools["rl_vault_resolve"](policy="manual")
        assert "Resolved 0 of 1" in declined
        assert "manual resolution required" in declined

        resolved = self.registered_tools["rl_vault_resolve"](policy="vault-wins")
        assert "Resolved 1 of 1" in resolved
        assert server.repository.fetch_by_id(record.id).notes == "vault notes"
        assert self.registered_tools["rl_vault_conflicts"]() == "No open conflicts."

    def test_status(self):
        self._server()
        self._add()
        status = self.registered_tools["rl_vault_status"]()
        assert "records: 1" in status
        assert "unsynced: 1" in status
        assert "last sync: never" in status
        assert "state: idle" in status

    def test_backups(self):
        self._server()
        self._add()
        assert self.registered_tools["rl_vault_backups"]() == "No backups found."
        created = self.registered_tools["rl_vault_backups"](create=True)
        assert created.startswith("Backup created: ")
        assert "1 backup(s):" in created


class TestFormatErrorResponse:
    @pytest.fixture
    def server(self, engine):
        with patch("readlist_vault.server.mcp_server.FastMCP"):
            yield ReadlistMcpServer(
                engine=engine, sync_config=None
            )

    def test_domain_error(self, server):
        error = SyncError("busy", code=ErrorCode.SYNC_IN_PROGRESS)
        assert server.format_error_response(error) == "Error: busy"

    def test_value_error_hides_details(self, server):
        result = server.format_error_response(ValueError("secret detail"))
        assert "secret" not in result
        assert result.startswith("Error: Invalid input (ref: ")

    def test_os_error(self, server):
        result = server.format_error_response(OSError("/private/path"))
        assert result.startswith("Error: A file system error occurred")

    def test_unexpected_error(self, server):
        result = server.format_error_response(RuntimeError("boom"))
        assert result.startswith("Error: An unexpected error occurred")
