# === MODULE PURPOSE ===
# Tests for the state stores.
# PostgreSQL access is mocked; no database is needed.

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.common.config import Config
from src.trading.repository import (
    JsonFileStateStore,
    MemoryStateStore,
    PostgresStateStore,
    PostgresStoreConfig,
    create_state_store_from_config,
)


def make_pool(conn: AsyncMock) -> MagicMock:
    """Pool whose acquire() yields `conn` as an async context manager."""
    acquire = MagicMock()
    acquire.__aenter__ = AsyncMock(return_value=conn)
    acquire.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire.return_value = acquire
    pool.close = AsyncMock()
    return pool


class TestMemoryStateStore:
    """Tests for MemoryStateStore."""

    @pytest.mark.asyncio
    async def test_missing_slices_are_none(self):
        """Test unknown slices load as None."""
        store = MemoryStateStore()
        state = await store.load_state()

        assert state == {"stocks": None, "user": None, "notifications": None, "marketSettings": None}

    @pytest.mark.asyncio
    async def test_saved_data_is_copied(self):
        """Test later mutation of saved data does not leak into the store."""
        store = MemoryStateStore()
        user = {"balance": 10.0, "holdings": []}

        await store.save_slice("user", user)
        user["holdings"].append({"id": "h"})

        assert await store.load_slice("user") == {"balance": 10.0, "holdings": []}


class TestJsonFileStateStore:
    """Tests for JsonFileStateStore."""

    @pytest.mark.asyncio
    async def test_slices_saved_independently(self, tmp_path):
        """Test saving one slice keeps the others."""
        path = tmp_path / "state.json"
        store = JsonFileStateStore(path)

        await store.save_slice("stocks", [{"id": "s1"}])
        await store.save_slice("user", {"balance": 5.0})

        on_disk = json.loads(path.read_text(encoding="utf-8"))
        assert on_disk == {"stocks": [{"id": "s1"}], "user": {"balance": 5.0}}

        reopened = JsonFileStateStore(path)
        assert await reopened.load_slice("stocks") == [{"id": "s1"}]
        assert await reopened.load_slice("notifications") is None

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        """Test a missing file loads as an empty state."""
        store = JsonFileStateStore(tmp_path / "nested" / "state.json")
        assert await store.load_slice("user") is None

        await store.save_slice("user", {"balance": 1.0})
        assert (tmp_path / "nested" / "state.json").exists()

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cache(self, tmp_path, monkeypatch):
        """Test a failed write leaves the cached state matching the file."""
        path = tmp_path / "state.json"
        store = JsonFileStateStore(path)
        await store.save_slice("user", {"balance": 1.0})

        def fail(document):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write", fail)
        with pytest.raises(OSError):
            await store.save_slice("user", {"balance": 2.0})

        assert await store.load_slice("user") == {"balance": 1.0}
        assert json.loads(path.read_text(encoding="utf-8")) == {"user": {"balance": 1.0}}

    @pytest.mark.asyncio
    async def test_corrupt_file_is_empty(self, tmp_path):
        """Test an unreadable file is treated as no state."""
        path = tmp_path / "state.json"
        path.write_text("{not json", encoding="utf-8")

        store = JsonFileStateStore(path)

        assert await store.load_slice("stocks") is None

    def test_relative_path_under_project(self):
        """Test relative paths resolve under the project root."""
        store = JsonFileStateStore("data/x.json")
        assert store.path.is_absolute()
        assert store.path.parts[-2:] == ("data", "x.json")


class TestPostgresStateStore:
    """Tests for PostgresStateStore with a mocked pool."""

    @pytest.mark.asyncio
    async def test_connect_creates_schema(self):
        """Test connect opens a pool and creates the slice table."""
        conn = AsyncMock()
        pool = make_pool(conn)

        with patch("src.trading.repository.asyncpg.create_pool", new=AsyncMock(return_value=pool)) as create:
            store = PostgresStateStore(PostgresStoreConfig(password="secret", schema="sim"))
            await store.connect()

        assert store.is_connected
        assert create.await_args.kwargs["password"] == "secret"
        statements = [call.args[0] for call in conn.execute.await_args_list]
        assert "CREATE SCHEMA IF NOT EXISTS sim" in statements[0]
        assert "sim.state_slices" in statements[1]

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test connection errors surface as ConnectionError."""
        failing = AsyncMock(side_effect=OSError("refused"))
        with patch("src.trading.repository.asyncpg.create_pool", new=failing):
            store = PostgresStateStore(PostgresStoreConfig())
            with pytest.raises(ConnectionError):
                await store.connect()
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_save_and_load(self):
        """Test slices are upserted as JSON and decoded on load."""
        conn = AsyncMock()
        conn.fetchrow.return_value = {"data": '{"balance": 3.0}'}
        pool = make_pool(conn)

        with patch("src.trading.repository.asyncpg.create_pool", new=AsyncMock(return_value=pool)):
            store = PostgresStateStore(PostgresStoreConfig(auto_create_schema=False))
            await store.connect()

        await store.save_slice("user", {"balance": 3.0})
        sql, name, payload = conn.execute.await_args.args
        assert "ON CONFLICT (name)" in sql
        assert name == "user"
        assert json.loads(payload) == {"balance": 3.0}

        assert await store.load_slice("user") == {"balance": 3.0}

        conn.fetchrow.return_value = None
        assert await store.load_slice("stocks") is None

        await store.close()
        pool.close.assert_awaited_once()
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        """Test queries before connect() fail loudly."""
        store = PostgresStateStore(PostgresStoreConfig())
        with pytest.raises(RuntimeError):
            await store.load_slice("user")


class TestStoreFactory:
    """Tests for create_state_store_from_config()."""

    def test_backends(self, monkeypatch):
        """Test each backend name builds its store."""
        monkeypatch.delenv("TRADING_STATE_PATH", raising=False)

        assert isinstance(
            create_state_store_from_config(Config.from_dict({"persistence": {"backend": "memory"}})),
            MemoryStateStore,
        )
        assert isinstance(
            create_state_store_from_config(Config.from_dict({"persistence": {"backend": "JSON"}})),
            JsonFileStateStore,
        )
        postgres = create_state_store_from_config(
            Config.from_dict({"persistence": {"backend": "postgres", "database": {"port": "6543"}}})
        )
        assert isinstance(postgres, PostgresStateStore)

    def test_unknown_backend(self):
        """Test unknown backends are rejected."""
        with pytest.raises(ValueError):
            create_state_store_from_config(Config.from_dict({"persistence": {"backend": "redis"}}))

    def test_postgres_config_defaults(self):
        """Test missing database keys fall back to defaults."""
        settings = PostgresStoreConfig.from_dict({"port": "6543"})
        assert settings.port == 6543
        assert settings.schema == "simulator"
        assert settings.host == "localhost"
