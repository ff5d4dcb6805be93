# === MODULE PURPOSE ===
# State stores for the trading simulator.
# Persist the engine's state slices independently of each other.

# === DEPENDENCIES ===
# - asyncpg: Async PostgreSQL client (PostgresStateStore)

# === KEY CONCEPTS ===
# - Slice: one named JSON document ("stocks", "user", "notifications",
#   "marketSettings"), saved on its own after each mutation
# - JsonFileStateStore: single JSON file, written atomically
# - PostgresStateStore: one JSONB row per slice in {schema}.state_slices
# - MemoryStateStore: in-process dict

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncpg

from src.common.config import PROJECT_ROOT, Config, get_persistence_config

logger = logging.getLogger(__name__)

MARKET_SETTINGS_SLICE = "marketSettings"
ALL_SLICES = ("stocks", "user", "notifications", MARKET_SETTINGS_SLICE)


class StateStore:
    """
    Base class for slice persistence.

    Subclasses implement load_slice() and save_slice().
    """

    async def connect(self) -> None:
        """Open underlying resources (no-op by default)."""

    async def close(self) -> None:
        """Release underlying resources (no-op by default)."""

    async def load_slice(self, name: str) -> Any | None:
        raise NotImplementedError

    async def save_slice(self, name: str, data: Any) -> None:
        raise NotImplementedError

    async def load_state(self, names: tuple[str, ...] = ALL_SLICES) -> dict[str, Any]:
        """Load every named slice; missing slices map to None."""
        return {name: await self.load_slice(name) for name in names}

    async def save_state(self, state: dict[str, Any]) -> None:
        """Save every slice in `state`."""
        for name, data in state.items():
            await self.save_slice(name, data)


class MemoryStateStore(StateStore):
    """Slices kept in a dict. Data is deep-copied through JSON on both sides."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._slices: dict[str, str] = {
            name: json.dumps(data) for name, data in (initial or {}).items()
        }

    async def load_slice(self, name: str) -> Any | None:
        raw = self._slices.get(name)
        return json.loads(raw) if raw is not None else None

    async def save_slice(self, name: str, data: Any) -> None:
        self._slices[name] = json.dumps(data)


class JsonFileStateStore(StateStore):
    """
    All slices in one JSON file keyed by slice name.

    Usage:
        store = JsonFileStateStore("data/trading-state.json")
        await store.save_slice("user", engine.user_to_dict())
        state = await store.load_state()
    """

    def __init__(self, path: str | Path):
        path = Path(path)
        self._path = path if path.is_absolute() else PROJECT_ROOT / path
        self._cache: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def load_slice(self, name: str) -> Any | None:
        document = await self._document()
        return document.get(name)

    async def save_slice(self, name: str, data: Any) -> None:
        document = {**await self._document(), name: data}
        await asyncio.to_thread(self._write, document)
        self._cache = document

    async def _document(self) -> dict[str, Any]:
        if self._cache is None:
            self._cache = await asyncio.to_thread(self._read)
        return self._cache

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt state file {self._path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Unexpected state file layout in {self._path}")
            return {}
        logger.info(f"Loaded trading state from {self._path}")
        return data

    def _write(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except Exception:
            Path(tmp_path).unlink(missing_ok=True)
            raise


# ==================== PostgreSQL ====================


@dataclass
class PostgresStoreConfig:
    """Configuration for the PostgreSQL state store."""

    host: str = "localhost"
    port: int = 5432
    database: str = "trading"
    user: str = "trader"
    password: str = ""
    pool_min_size: int = 1
    pool_max_size: int = 5
    schema: str = "simulator"
    auto_create_schema: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PostgresStoreConfig":
        defaults = cls()
        return cls(
            host=str(data.get("host", defaults.host)),
            port=int(data.get("port", defaults.port)),
            database=str(data.get("database", defaults.database)),
            user=str(data.get("user", defaults.user)),
            password=str(data.get("password", defaults.password)),
            pool_min_size=int(data.get("pool_min_size", defaults.pool_min_size)),
            pool_max_size=int(data.get("pool_max_size", defaults.pool_max_size)),
            schema=str(data.get("schema", defaults.schema)),
            auto_create_schema=bool(data.get("auto_create_schema", defaults.auto_create_schema)),
        )


SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS {schema};
"""

TABLES_SQL = """
CREATE TABLE IF NOT EXISTS {schema}.state_slices (
    name VARCHAR(50) PRIMARY KEY,
    data JSONB NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class PostgresStateStore(StateStore):
    """
    Slices stored as JSONB rows.

    Usage:
        store = PostgresStateStore(PostgresStoreConfig(password="..."))
        await store.connect()
        await store.save_slice("stocks", engine.market.to_list())
        await store.close()
    """

    def __init__(self, config: PostgresStoreConfig):
        self._config = config
        self._pool: asyncpg.Pool | None = None
        self._is_connected = False
        self._schema = config.schema

    async def connect(self) -> None:
        """Establish connection pool and initialize schema."""
        if self._is_connected:
            return

        try:
            logger.info(
                f"Connecting to PostgreSQL: {self._config.host}:{self._config.port}"
                f"/{self._config.database} (schema: {self._schema})"
            )

            self._pool = await asyncpg.create_pool(
                host=self._config.host,
                port=self._config.port,
                database=self._config.database,
                user=self._config.user,
                password=self._config.password,
                min_size=self._config.pool_min_size,
                max_size=self._config.pool_max_size,
            )

            if self._config.auto_create_schema:
                await self._init_schema()

            self._is_connected = True
            logger.info("PostgresStateStore connected")

        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise ConnectionError(f"Cannot connect to state database: {e}") from e

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            self._is_connected = False
            logger.info("PostgresStateStore disconnected")

    async def _init_schema(self) -> None:
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL.format(schema=self._schema))
            await conn.execute(TABLES_SQL.format(schema=self._schema))
            logger.info(f"Initialized state schema: {self._schema}")

    async def load_slice(self, name: str) -> Any | None:
        async with self._db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT data FROM {self._schema}.state_slices WHERE name = $1",
                name,
            )

        if not row:
            return None

        data = row["data"]
        return json.loads(data) if isinstance(data, str) else data

    async def save_slice(self, name: str, data: Any) -> None:
        async with self._db_pool.acquire() as conn:
            await conn.execute(
                f"""
                INSERT INTO {self._schema}.state_slices (name, data, updated_at)
                VALUES ($1, $2::jsonb, CURRENT_TIMESTAMP)
                ON CONFLICT (name) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = CURRENT_TIMESTAMP
                """,
                name,
                json.dumps(data),
            )

    @property
    def _db_pool(self) -> asyncpg.Pool:
        """Get pool, raising if not connected."""
        if not self._is_connected or self._pool is None:
            raise RuntimeError("PostgresStateStore not connected. Call connect() first.")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._is_connected


def create_state_store_from_config(config: Config | None = None) -> StateStore:
    """
    Create the state store selected by `persistence.backend`.

    Raises:
        ValueError: On an unknown backend.
    """
    settings = get_persistence_config(config)
    backend = settings["backend"]

    if backend == "json":
        return JsonFileStateStore(settings["path"])
    if backend == "postgres":
        return PostgresStateStore(PostgresStoreConfig.from_dict(settings["database"]))
    if backend == "memory":
        return MemoryStateStore()

    raise ValueError(f"Unknown persistence backend: {backend}")
