"""
Database Manager - PostgreSQL schema and operations.

Stores Hostname resources, the secrets they reference, and the history of
reconciliation passes. The hostnames table doubles as the controller's work
queue through its next_reconcile_time column.
"""

import asyncpg
import base64
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from mergepatch import apply_merge_patch, create_merge_patch
from migrate import run_migrations

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages PostgreSQL database operations for the operator."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    # ==================== Hostname Methods ====================

    async def create_hostname(
        self,
        name: str,
        namespace: str,
        spec: Dict[str, Any],
    ) -> int:
        """
        Create a new Hostname, due for reconciliation immediately.

        Args:
            name: Resource name, unique within the namespace
            namespace: Namespace of the resource
            spec: Hostname spec (camelCase JSON document)

        Raises:
            asyncpg.UniqueViolationError: If the name is taken in the namespace
        """
        async with self.pool.acquire() as conn:
            hostname_id = await conn.fetchval(
                """
                INSERT INTO hostnames (name, namespace, spec, status, next_reconcile_time)
                VALUES ($1, $2, $3, '{}'::jsonb, NOW())
                RETURNING id
                """,
                name,
                namespace,
                json.dumps(spec),
            )

            logger.info(f"Created hostname {namespace}/{name} with ID {hostname_id}")
            return hostname_id

    async def get_hostname(self, hostname_id: int) -> Optional[Dict[str, Any]]:
        """Get a hostname by ID."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM hostnames WHERE id = $1",
                hostname_id,
            )
            if not row:
                return None
            return self._parse_hostname_row(row)

    async def get_hostname_by_name(
        self, name: str, namespace: str
    ) -> Optional[Dict[str, Any]]:
        """Get a hostname by namespace and name."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM hostnames WHERE name = $1 AND namespace = $2",
                name,
                namespace,
            )
            if not row:
                return None
            return self._parse_hostname_row(row)

    async def list_hostnames(
        self,
        namespace: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """List hostnames, optionally restricted to one namespace."""
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM hostnames WHERE 1=1"
            params = []
            param_count = 0

            if namespace:
                param_count += 1
                query += f" AND namespace = ${param_count}"
                params.append(namespace)

            param_count += 1
            query += f" ORDER BY namespace, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_hostname_row(row) for row in rows]

    async def update_hostname(self, hostname_id: int, spec: Dict[str, Any]) -> int:
        """
        Replace a hostname's spec.

        Bumps the generation and makes the hostname due immediately.

        Returns:
            The new generation

        Raises:
            ValueError: If the hostname does not exist
        """
        async with self.pool.acquire() as conn:
            new_generation = await conn.fetchval(
                """
                UPDATE hostnames
                SET spec = $1,
                    generation = generation + 1,
                    retry_count = 0,
                    next_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE id = $2
                RETURNING generation
                """,
                json.dumps(spec),
                hostname_id,
            )

            if new_generation is None:
                raise ValueError(f"Hostname {hostname_id} not found")

            logger.info(
                f"Updated hostname {hostname_id} to generation {new_generation}"
            )
            return new_generation

    async def delete_hostname(self, hostname_id: int) -> bool:
        """
        Permanently delete a hostname and its history.

        Returns:
            True if the hostname existed
        """
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                "DELETE FROM hostnames WHERE id = $1 RETURNING id",
                hostname_id,
            )
            if result:
                logger.info(f"Deleted hostname {hostname_id}")
                return True
            return False

    async def patch_hostname_status(
        self,
        hostname_id: int,
        original: Dict[str, Any],
        modified: Dict[str, Any],
    ) -> bool:
        """
        Write a status change as a JSON merge patch.

        The patch is computed from ``original`` to ``modified`` and applied to
        the stored status under a row lock, so fields changed by someone else
        since ``original`` was read are preserved.

        Args:
            hostname_id: The hostname ID
            original: Status as it was when the caller read it
            modified: Status as the caller wants it

        Returns:
            True if the patch was applied (or was empty), False if the
            hostname no longer exists
        """
        patch = create_merge_patch(original, modified)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT status FROM hostnames WHERE id = $1 FOR UPDATE",
                    hostname_id,
                )
                if row is None:
                    return False

                if not patch:
                    logger.debug(f"Status of hostname {hostname_id} unchanged")
                    return True

                current = self._load_json(row["status"])
                await conn.execute(
                    """
                    UPDATE hostnames
                    SET status = $1, updated_at = NOW()
                    WHERE id = $2
                    """,
                    json.dumps(apply_merge_patch(current, patch)),
                    hostname_id,
                )

        logger.debug(f"Patched status of hostname {hostname_id}: {patch}")
        return True

    # ==================== Work Queue Methods ====================

    async def get_hostnames_needing_reconciliation(
        self,
        limit: int = 10,
        exclude_ids: Optional[List[int]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get hostnames whose next reconciliation is due.

        Args:
            limit: Maximum number of hostnames to return
            exclude_ids: IDs already being reconciled
        """
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM hostnames
                WHERE next_reconcile_time IS NOT NULL
                  AND next_reconcile_time <= NOW()
                  AND NOT (id = ANY($2::int[]))
                ORDER BY next_reconcile_time ASC
                LIMIT $1
                """,
                limit,
                list(exclude_ids or []),
            )

            return [self._parse_hostname_row(row) for row in rows]

    async def schedule_hostname(
        self,
        hostname_id: int,
        requeue_after: Optional[int],
        generation: int,
        polled_at: Optional[datetime],
    ) -> None:
        """
        Record a completed pass and arm the next one.

        Clears any retry backoff. If the spec changed or a manual trigger
        moved next_reconcile_time while the pass ran, the hostname stays due.

        Args:
            hostname_id: The hostname ID
            requeue_after: Seconds until the next pass, None for no next pass
            generation: Generation the pass reconciled
            polled_at: next_reconcile_time the pass was started from
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE hostnames
                SET observed_generation = $3,
                    last_reconcile_time = NOW(),
                    retry_count = 0,
                    next_reconcile_time = CASE
                        WHEN generation > $3 THEN next_reconcile_time
                        WHEN next_reconcile_time IS DISTINCT FROM $4::timestamp
                            THEN next_reconcile_time
                        WHEN $2::int IS NULL THEN NULL
                        ELSE NOW() + INTERVAL '1 second' * $2::int
                    END,
                    updated_at = NOW()
                WHERE id = $1
                """,
                hostname_id,
                requeue_after,
                generation,
                polled_at,
            )

    async def schedule_retry(
        self,
        hostname_id: int,
        generation: int,
        polled_at: Optional[datetime],
        base_delay: int = 60,
        max_delay: int = 3600,
        jitter_factor: float = 0.1,
    ) -> None:
        """
        Requeue a failed pass with exponential backoff and jitter.

        Args:
            hostname_id: The hostname ID
            generation: Generation the failed pass was started for
            polled_at: next_reconcile_time the pass was started from
            base_delay: Base delay in seconds (default 60)
            max_delay: Maximum delay in seconds (default 3600 = 1 hour)
            jitter_factor: Jitter factor ±X (default 0.1 = ±10%)
        """
        async with self.pool.acquire() as conn:
            # Backoff grows with the retry count before this failure, capped
            # at max_delay, with ±jitter_factor to spread out retries
            await conn.execute(
                """
                UPDATE hostnames
                SET retry_count = retry_count + 1,
                    last_reconcile_time = NOW(),
                    next_reconcile_time = CASE
                        WHEN generation > $2 THEN next_reconcile_time
                        WHEN next_reconcile_time IS DISTINCT FROM $6::timestamp
                            THEN next_reconcile_time
                        ELSE NOW() + (
                            INTERVAL '1 second' * LEAST(
                                $3 * POWER(2, LEAST(retry_count, 10)),
                                $4
                            ) * (1 + (random() * 2 - 1) * $5)
                        )
                    END,
                    updated_at = NOW()
                WHERE id = $1
                """,
                hostname_id,
                generation,
                base_delay,
                max_delay,
                jitter_factor,
                polled_at,
            )

    async def mark_hostname_for_reconciliation(self, hostname_id: int) -> bool:
        """Manually trigger reconciliation for a hostname."""
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                UPDATE hostnames
                SET next_reconcile_time = NOW()
                WHERE id = $1
                RETURNING id
                """,
                hostname_id,
            )
            return result is not None

    # ==================== Reconciliation History ====================

    async def record_reconciliation(
        self,
        hostname_id: int,
        success: bool,
        generation: Optional[int] = None,
        trigger_reason: Optional[str] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ):
        """Record a reconciliation pass in history."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO reconciliation_history (
                    hostname_id, generation, success, trigger_reason,
                    message, error_message, duration_seconds
                )
                SELECT id, COALESCE($2, generation), $3, $4, $5, $6, $7
                FROM hostnames
                WHERE id = $1
                """,
                hostname_id,
                generation,
                success,
                trigger_reason,
                message,
                error_message,
                duration_seconds,
            )

    async def get_reconciliation_history(
        self, hostname_id: int, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Get reconciliation history for a hostname, newest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM reconciliation_history
                WHERE hostname_id = $1
                ORDER BY reconcile_time DESC
                LIMIT $2
                """,
                hostname_id,
                limit,
            )

            return [dict(row) for row in rows]

    # ==================== Secret Methods ====================

    async def put_secret(
        self, name: str, namespace: str, data: Dict[str, bytes]
    ) -> None:
        """
        Create or replace a secret.

        Args:
            name: Secret name
            namespace: Secret namespace
            data: Mapping of key to raw bytes
        """
        encoded = {
            key: base64.b64encode(value).decode("ascii") for key, value in data.items()
        }

        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO secrets (name, namespace, data)
                VALUES ($1, $2, $3)
                ON CONFLICT (namespace, name)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                name,
                namespace,
                json.dumps(encoded),
            )

        # Keys only, never values
        logger.info(f"Stored secret {namespace}/{name} (keys: {sorted(data)})")

    async def get_secret(
        self, name: str, namespace: str
    ) -> Optional[Dict[str, bytes]]:
        """
        Read a secret.

        Returns:
            Mapping of key to raw bytes, or None if the secret does not exist
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM secrets WHERE name = $1 AND namespace = $2",
                name,
                namespace,
            )
            if not row:
                return None

            return {
                key: base64.b64decode(value)
                for key, value in self._load_json(row["data"]).items()
            }

    async def list_secret_keys(self, name: str, namespace: str) -> Optional[List[str]]:
        """List the keys of a secret without reading its values."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT data FROM secrets WHERE name = $1 AND namespace = $2",
                name,
                namespace,
            )
            if not row:
                return None
            return sorted(self._load_json(row["data"]).keys())

    async def delete_secret(self, name: str, namespace: str) -> bool:
        """Delete a secret. Returns False if it did not exist."""
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM secrets
                WHERE name = $1 AND namespace = $2
                RETURNING id
                """,
                name,
                namespace,
            )
            if result:
                logger.info(f"Deleted secret {namespace}/{name}")
                return True
            return False

    # ==================== Helpers ====================

    @staticmethod
    def _load_json(value: Any) -> Dict[str, Any]:
        if not value:
            return {}
        return json.loads(value) if isinstance(value, str) else dict(value)

    def _parse_hostname_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse a hostname row from the database, converting JSON fields.

        Args:
            row: An asyncpg.Record from a database query

        Returns:
            A dictionary with the hostname data, spec and status parsed
        """
        result = dict(row)
        result["spec"] = self._load_json(result.get("spec"))
        result["status"] = self._load_json(result.get("status"))
        return result
