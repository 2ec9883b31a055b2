"""SQL migration runner applied as an aiohttp startup hook."""
from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Mapping

import asyncpg
import structlog
from aiohttp import web

from webhook_service.settings import Settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"

_CONNECT_RETRIES = 5
_CONNECT_RETRY_DELAY = 2.0


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path
    sql: str
    checksum: str


def load_migrations(migrations_dir: Path) -> list[Migration]:
    """Read ``*.sql`` files in version order."""
    migrations: list[Migration] = []
    seen: set[str] = set()
    for path in sorted(migrations_dir.glob("*.sql")):
        version = path.stem
        if version in seen:
            raise ValueError(f"Duplicate migration version detected: {version}")
        seen.add(version)
        sql = path.read_text(encoding="utf-8")
        checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
        migrations.append(Migration(version=version, path=path, sql=sql, checksum=checksum))
    return migrations


def pending_migrations(
    migrations: list[Migration], applied: Mapping[str, str]
) -> list[Migration]:
    """Return migrations not yet applied; an edited applied file is an error."""
    pending = []
    for migration in migrations:
        if migration.version in applied:
            if applied[migration.version] != migration.checksum:
                raise RuntimeError(
                    f"Checksum mismatch for {migration.version}: "
                    f"{applied[migration.version]} (db) != {migration.checksum} (file)"
                )
            continue
        pending.append(migration)
    return pending


async def _connect(database_url: str) -> asyncpg.Connection | None:
    for attempt in range(1, _CONNECT_RETRIES + 1):
        try:
            return await asyncpg.connect(database_url)
        except (OSError, asyncpg.PostgresError) as exc:
            logger.warning(
                "migrations_db_connect_failed",
                attempt=attempt,
                max_attempts=_CONNECT_RETRIES,
                error=str(exc),
            )
            if attempt < _CONNECT_RETRIES:
                await asyncio.sleep(_CONNECT_RETRY_DELAY)
    return None


async def apply_migrations(conn: asyncpg.Connection, migrations: list[Migration]) -> int:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    pending = pending_migrations(migrations, {row["version"]: row["checksum"] for row in rows})
    if not pending:
        logger.info("migrations_up_to_date")
        return 0

    for migration in pending:
        logger.info("migration_applying", version=migration.version)
        async with conn.transaction():
            await conn.execute(migration.sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                migration.version,
                migration.checksum,
            )
    logger.info("migrations_applied", count=len(pending))
    return len(pending)


def create_migration_runner(
    settings: Settings,
    migrations_dir: Path = MIGRATIONS_DIR,
) -> Callable[[web.Application], Awaitable[None]]:
    """Create an aiohttp startup hook to apply SQL migrations."""

    async def apply_migrations_on_startup(_app: web.Application) -> None:
        if not migrations_dir.exists():
            logger.warning("migrations_dir_missing", path=str(migrations_dir))
            return
        migrations = load_migrations(migrations_dir)
        if not migrations:
            logger.warning("migrations_none_found", path=str(migrations_dir))
            return

        conn = await _connect(str(settings.database_url))
        if conn is None:
            raise RuntimeError("Failed to connect to database to apply migrations")
        try:
            await apply_migrations(conn, migrations)
        finally:
            await conn.close()

    return apply_migrations_on_startup
