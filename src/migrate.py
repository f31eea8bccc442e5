"""
Schema migrations for the operator database.

Migrations are ``NNN_description.sql`` files in the migrations package,
applied once each, oldest first, every one inside its own transaction.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Set, Tuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

Migration = Tuple[str, str, Path]


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    """Create the schema_migrations bookkeeping table when missing."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            id SERIAL PRIMARY KEY,
            version VARCHAR(255) NOT NULL UNIQUE,
            filename VARCHAR(255) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations(migrations_dir: Optional[Path] = None) -> List[Migration]:
    """
    List the migration files shipped with the operator.

    Args:
        migrations_dir: Directory to scan, MIGRATIONS_DIR by default

    Returns:
        (version, filename, path) tuples ordered by version

    Raises:
        FileNotFoundError: If the directory does not exist
    """
    directory = migrations_dir or MIGRATIONS_DIR
    if not directory.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {directory}")

    found = []
    for entry in sorted(directory.iterdir()):
        match = MIGRATION_PATTERN.match(entry.name)
        if match and entry.is_file():
            found.append((match.group(1), entry.name, entry))

    return found


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    """Versions already recorded in schema_migrations."""
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


def select_pending(migrations: List[Migration], applied: Set[str]) -> List[Migration]:
    """Filter out migrations that have already been applied."""
    return [m for m in migrations if m[0] not in applied]


async def apply_migration(
    pool: asyncpg.Pool, version: str, filename: str, path: Path
) -> None:
    """
    Run one migration file and record it, atomically.

    Args:
        pool: asyncpg connection pool
        version: Migration version, e.g. "001"
        filename: File name recorded in schema_migrations
        path: Path of the SQL file
    """
    sql = path.read_text(encoding="utf-8")

    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute(
                "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
                version,
                filename,
            )

    logger.info(f"Applied migration {filename}")


async def run_migrations(
    pool: asyncpg.Pool, migrations_dir: Optional[Path] = None
) -> int:
    """
    Bring the schema up to date.

    Args:
        pool: A connected asyncpg pool
        migrations_dir: Directory to read migrations from

    Returns:
        How many migrations were applied

    Raises:
        FileNotFoundError: If the migrations directory is missing
        asyncpg.PostgresError: If a migration fails. It is rolled back and
            earlier migrations stay applied.
    """
    async with pool.acquire() as conn:
        await ensure_migration_table(conn)

    migrations = discover_migrations(migrations_dir)
    if not migrations:
        logger.info("No migration files found")
        return 0

    async with pool.acquire() as conn:
        applied = await get_applied_versions(conn)

    pending = select_pending(migrations, applied)
    if not pending:
        logger.info("Database schema is up to date")
        return 0

    logger.info(f"Applying {len(pending)} pending migration(s)")
    for version, filename, path in pending:
        await apply_migration(pool, version, filename, path)

    logger.info(f"Schema now at version {pending[-1][0]}")
    return len(pending)
