"""
Per-project PostgreSQL connection management using asyncpg.

Every logical operation (a registration check, one project's export, one
project's team query) opens its own short-lived pool and closes it on exit.
"""

import asyncio
import json
import logging
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Optional

import asyncpg

from datadump.core.logging_config import get_logger
from datadump.export.exceptions import ConnectionError, QueryError

if TYPE_CHECKING:
    from datadump.registry import ProjectConfig

DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass
class ConnectionConfig:
    """Where and how to reach one project database."""

    host: str
    port: int
    database: str
    user: str
    password: str
    ssl: bool = True
    ssl_verify: bool = False
    pool_size: int = 1
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    statement_cache_size: int = 0

    @classmethod
    def from_project(cls, project: "ProjectConfig", **overrides: Any) -> "ConnectionConfig":
        """Build a connection config from a registered project."""
        return cls(
            host=project.host,
            port=project.port,
            database=project.database,
            user=project.username,
            password=project.password,
            **overrides,
        )

    @classmethod
    def from_settings(cls, project: "ProjectConfig") -> "ConnectionConfig":
        """Build a connection config using the [database] section of datadump.toml."""
        from datadump.core.config import get

        return cls.from_project(
            project,
            ssl=get("database", "ssl"),
            ssl_verify=get("database", "ssl_verify"),
            pool_size=get("database", "pool_size"),
            connect_timeout=float(get("database", "connect_timeout")),
            statement_cache_size=get("database", "statement_cache_size"),
        )


def build_ssl_context(verify: bool) -> ssl.SSLContext:
    """TLS context for project databases.

    Managed Postgres poolers present certificates that do not chain to a
    public root, so by default the certificate is accepted unverified.
    """
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def _init_connection(conn: asyncpg.Connection) -> None:
    # Decode json/jsonb into Python objects so exports serialise them structurally.
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)


class DatabaseConnection:
    """A small asyncpg pool bound to one project's database."""

    def __init__(self, config: ConnectionConfig, logger: Optional[logging.Logger] = None):
        self._config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._logger = logger or get_logger(__name__)

    @property
    def is_connected(self) -> bool:
        return self._pool is not None and not self._pool._closed

    def _pool_or_raise(self) -> asyncpg.Pool:
        if self._pool is None:
            raise ConnectionError("Not connected to database")
        return self._pool

    async def connect(self) -> None:
        """Create the pool. A second call on an open connection does nothing.

        Raises:
            ConnectionError: timeout, refused connection or rejected credentials
        """
        if self._pool is not None:
            return

        cfg = self._config
        pool_args = dict(
            host=cfg.host,
            port=cfg.port,
            database=cfg.database,
            user=cfg.user,
            password=cfg.password,
            ssl=build_ssl_context(cfg.ssl_verify) if cfg.ssl else False,
            min_size=1,
            max_size=cfg.pool_size,
            timeout=cfg.connect_timeout,
            statement_cache_size=cfg.statement_cache_size,
            init=_init_connection,
        )
        try:
            self._pool = await asyncio.wait_for(
                asyncpg.create_pool(**pool_args), timeout=cfg.connect_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectionError(
                f"Connection to {cfg.host}:{cfg.port} timed out after {cfg.connect_timeout:g}s"
            ) from e
        except (*_DRIVER_ERRORS, OSError) as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e

        self._logger.info(f"Opened pool for {cfg.user}@{cfg.host}:{cfg.port}/{cfg.database}")

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        self._logger.debug(f"Closed pool for {self._config.host}")

    async def execute(self, query: str, *args: Any) -> list[dict[str, Any]]:
        """Run ``query`` and return every row as a dict."""
        pool = self._pool_or_raise()
        try:
            async with pool.acquire() as conn:
                return [dict(record) for record in await conn.fetch(query, *args)]
        except _DRIVER_ERRORS as e:
            raise QueryError(f"Query execution failed: {e}") from e

    async def stream(
        self, query: str, *args: Any, batch_size: int = 1000
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield rows of ``query`` in lists of at most ``batch_size``.

        Server-side cursors need a transaction, so the whole read runs in one.
        """
        pool = self._pool_or_raise()
        try:
            async with pool.acquire() as conn, conn.transaction():
                cursor = await conn.cursor(query, *args)
                batch = await cursor.fetch(batch_size)
                while batch:
                    yield [dict(record) for record in batch]
                    batch = await cursor.fetch(batch_size)
        except _DRIVER_ERRORS as e:
            raise QueryError(f"Stream query failed: {e}") from e


@asynccontextmanager
async def open_connection(
    project: "ProjectConfig",
    config: Optional[ConnectionConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> AsyncIterator[DatabaseConnection]:
    """Open a fresh pool for ``project`` and close it on every exit path.

    Raises:
        ConnectionError: handshake timed out, credentials rejected, or host unreachable.
    """
    db = DatabaseConnection(config or ConnectionConfig.from_settings(project), logger=logger)
    try:
        await db.connect()
        yield db
    finally:
        await db.close()
