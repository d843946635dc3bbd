"""Destination database operations: table provisioning, column sync and upserts.

Works on any SQLAlchemy async engine whose dialect supports
INSERT ... ON CONFLICT (PostgreSQL, SQLite).
"""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from notion_mirror.core.exceptions import DestinationError, SchemaCacheError
from notion_mirror.schemas.notion import (
    ColumnDefinition,
    ColumnSyncResult,
    DestinationType,
    UpsertResult,
    parse_timestamp,
)
from notion_mirror.services import schema as schema_mapper
from notion_mirror.services.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

PROBE_NOTION_ID = "temp_table_creation"

_SCHEMA_CACHE_MARKERS = (
    "no such column",
    "has no column named",
    "undefinedcolumn",
    "schema cache",
    "pgrst204",
)


def is_schema_cache_error(exc: BaseException) -> bool:
    """Destination rejected a column it should know about."""
    message = str(exc).lower()
    if any(marker in message for marker in _SCHEMA_CACHE_MARKERS):
        return True
    return "column" in message and "does not exist" in message


class DestinationClient:
    """Writes Notion rows and schema changes into the destination database."""

    def __init__(self, engine: AsyncEngine, policy: Optional[RetryPolicy] = None):
        self.engine = engine
        self.policy = policy or RetryPolicy()
        # Reflected tables, refreshed when columns are added
        self._tables: dict[str, sa.Table] = {}

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _quote(self, name: str) -> str:
        return self.engine.dialect.identifier_preparer.quote(name)

    def column_type(self, dest_type: DestinationType) -> sa.types.TypeEngine:
        """SQLAlchemy type for a destination column type on this dialect."""
        if dest_type == DestinationType.TEXT_ARRAY:
            if self.dialect == "postgresql":
                return postgresql.ARRAY(sa.Text())
            return sa.JSON()
        if dest_type == DestinationType.TIMESTAMPTZ:
            return sa.DateTime(timezone=True)
        if dest_type == DestinationType.BOOLEAN:
            return sa.Boolean()
        if dest_type == DestinationType.NUMERIC:
            return sa.Numeric()
        return sa.Text()

    def alter_statement(self, table: str, column: ColumnDefinition) -> str:
        """Additive DDL for one missing column."""
        ddl_type = self.column_type(column.type).compile(dialect=self.engine.dialect)
        if_not_exists = "IF NOT EXISTS " if self.dialect == "postgresql" else ""
        return (
            f"ALTER TABLE {self._quote(table)} "
            f"ADD COLUMN {if_not_exists}{self._quote(column.name)} {ddl_type}"
        )

    def _base_table(self, table: str) -> sa.Table:
        return sa.Table(
            table,
            sa.MetaData(),
            sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
                      primary_key=True, autoincrement=True),
            sa.Column("notion_id", sa.Text(), nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column("last_edited_time", sa.DateTime(timezone=True), nullable=True),
        )

    def _insert(self, table: sa.Table):
        if self.dialect == "postgresql":
            return postgresql.insert(table)
        if self.dialect == "sqlite":
            return sqlite.insert(table)
        raise DestinationError(f"Upsert is not supported on dialect '{self.dialect}'")

    async def table_exists(self, table: str) -> bool:
        """True if the table answers a trivial read."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(sa.text(f"SELECT 1 FROM {self._quote(table)} LIMIT 1"))
            return True
        except DBAPIError:
            return False

    async def ensure_table_exists(self, table: str) -> None:
        """Create the base mirror table if it is missing."""
        if await self.table_exists(table):
            logger.info(f"Table {table} already exists")
            return

        logger.info(f"Creating base table {table}")
        base = self._base_table(table)
        now = datetime.now(timezone.utc)
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(base.create, checkfirst=True)
                # Probe row proves the table accepts writes, then goes away
                await conn.execute(sa.insert(base).values(
                    notion_id=PROBE_NOTION_ID, created_at=now, updated_at=now,
                ))
                await conn.execute(sa.delete(base).where(base.c.notion_id == PROBE_NOTION_ID))
        except DBAPIError as e:
            logger.error(f"Error creating base table {table}: {e}")
            raise DestinationError(f"Could not create table {table}: {e}") from e

        self._tables.pop(table, None)
        logger.info(f"Base table {table} created successfully")

    async def get_existing_columns(self, table: str) -> list[str]:
        """
        Best-effort list of the table's column names.

        Tries catalog introspection, then the keys of one sampled row, then
        assumes only the base columns exist.
        """
        try:
            async with self.engine.connect() as conn:
                columns = await conn.run_sync(
                    lambda sync_conn: [c["name"] for c in sa.inspect(sync_conn).get_columns(table)]
                )
            if columns:
                return columns
        except Exception as e:
            logger.debug(f"Catalog introspection unavailable for {table}: {e}")

        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(sa.text(f"SELECT * FROM {self._quote(table)} LIMIT 1"))
                sample = result.mappings().first()
            if sample is not None:
                columns = list(sample.keys())
                logger.info(f"Found existing columns in {table}: {columns}")
                return columns
            logger.info(f"No data in {table}, assuming base columns only")
        except Exception as e:
            logger.error(f"Error getting existing columns for {table}: {e}")

        return list(schema_mapper.BASE_COLUMNS)

    async def _execute_ddl(self, statement: str) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(sa.text(statement))

    async def create_missing_columns(self, table: str, schema: dict[str, str]) -> ColumnSyncResult:
        """
        Add a column for every schema property the table lacks.

        Never drops or retypes a column. A failed column is recorded in
        `errors` and the rest are still attempted.
        """
        required = schema_mapper.extract_column_definitions(schema)
        if not schema_mapper.validate_column_definitions(required):
            raise DestinationError("Invalid column definitions")

        for column, names in schema_mapper.find_collisions(schema.keys()).items():
            logger.warning(f"Properties {names} all map to column '{column}' in {table}")

        existing = await self.get_existing_columns(table)
        missing = schema_mapper.diff(required, existing)
        summary = schema_mapper.create_schema_summary(missing, existing)

        if not missing:
            logger.info(f"No missing columns to create in {table}")
            return ColumnSyncResult(created=0, existing=len(existing), missing=0, summary=summary)

        logger.info(f"Creating {len(missing)} missing columns in {table}: {[c.name for c in missing]}")

        created = 0
        errors = []
        for column in missing:
            statement = self.alter_statement(table, column)
            try:
                await run_with_retry(
                    lambda: self._execute_ddl(statement),
                    self.policy,
                    description=f"add column {column.name}",
                )
                created += 1
                logger.info(f"Created column {table}.{column.name} ({column.type.value})")
            except Exception as e:
                logger.error(f"Failed to create column {table}.{column.name}: {e}")
                errors.append({"column": column.name, "statement": statement, "error": str(e)})

        if created:
            self._tables.pop(table, None)

        result = ColumnSyncResult(
            created=created,
            existing=len(existing),
            missing=len(missing) - created,
            errors=errors,
            summary=summary,
        )
        if errors:
            logger.warning(f"Column creation for {table} finished with {len(errors)} errors")
        return result

    async def get_table(self, table: str) -> sa.Table:
        """Reflected table, from cache when available."""
        if table not in self._tables:
            metadata = sa.MetaData()
            async with self.engine.connect() as conn:
                self._tables[table] = await conn.run_sync(
                    lambda sync_conn: sa.Table(table, metadata, autoload_with=sync_conn)
                )
        return self._tables[table]

    async def refresh_schema_cache(self, table: str) -> sa.Table:
        """Drop the cached reflection of `table` and reflect it again."""
        logger.info(f"Refreshing schema cache for {table}")
        self._tables.pop(table, None)
        return await self.get_table(table)

    def _coerce(self, column_type: sa.types.TypeEngine, value: Any) -> Any:
        """Convert a transformed value into what the column's driver expects."""
        if value is None:
            return None
        if isinstance(column_type, sa.DateTime):
            if isinstance(value, str):
                try:
                    return parse_timestamp(value)
                except ValueError:
                    logger.warning(f"Unparseable timestamp {value!r}, storing null")
                    return None
            return value
        if isinstance(column_type, sa.ARRAY):
            items = value if isinstance(value, list) else [value]
            return [i if isinstance(i, str) else json.dumps(i) for i in items]
        if isinstance(column_type, sa.JSON):
            return value
        if isinstance(column_type, sa.Boolean):
            return bool(value)
        if isinstance(column_type, sa.Numeric):
            if isinstance(value, bool):
                return int(value)
            if isinstance(value, str):
                try:
                    return Decimal(value)
                except InvalidOperation:
                    logger.warning(f"Non-numeric value {value!r}, storing null")
                    return None
            return value
        if isinstance(column_type, sa.String):
            if isinstance(value, str):
                return value
            if isinstance(value, bool):
                return "true" if value else "false"
            if isinstance(value, (list, dict)):
                return json.dumps(value)
            return str(value)
        return value

    async def _writable_table(self, table: str, rows: list[dict[str, Any]]) -> sa.Table:
        """Reflected table, refreshed once if rows mention columns it lacks."""
        table_obj = await self.get_table(table)
        keys = set().union(*(row.keys() for row in rows))
        unknown = keys - set(table_obj.c.keys())
        if unknown:
            table_obj = await self.refresh_schema_cache(table)
            unknown = keys - set(table_obj.c.keys())
            if unknown:
                logger.warning(f"Dropping values for columns missing from {table}: {sorted(unknown)}")
        return table_obj

    async def _upsert_once(
        self, table: str, rows: list[dict[str, Any]], conflict_key: str
    ) -> UpsertResult:
        table_obj = await self._writable_table(table, rows)
        key_column = table_obj.c[conflict_key]
        ids = {row[conflict_key] for row in rows}

        async with self.engine.begin() as conn:
            result = await conn.execute(sa.select(key_column).where(key_column.in_(list(ids))))
            already_present = set(result.scalars().all())

            for row in rows:
                data = {
                    k: self._coerce(table_obj.c[k].type, v)
                    for k, v in row.items()
                    if k in table_obj.c and k != "id"
                }
                stmt = self._insert(table_obj).values(data)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[conflict_key],
                    set_={k: stmt.excluded[k] for k in data if k != conflict_key},
                )
                await conn.execute(stmt)

        return UpsertResult(inserted=len(ids - already_present), updated=len(ids & already_present))

    async def upsert_rows(
        self,
        table: str,
        rows: list[dict[str, Any]],
        conflict_key: str = "notion_id",
    ) -> UpsertResult:
        """
        Insert or update rows keyed on `conflict_key`, in one transaction.

        Every row's updated_at is set to now. Transient failures are retried;
        an unknown-column failure triggers one schema refresh and one more try.
        """
        if not rows:
            logger.warning(f"No data to upsert into {table}")
            return UpsertResult()

        now = datetime.now(timezone.utc)
        stamped = [{**row, "updated_at": now} for row in rows]

        try:
            result = await run_with_retry(
                lambda: self._upsert_once(table, stamped, conflict_key),
                self.policy,
                description=f"upsert into {table}",
            )
        except DBAPIError as e:
            if not is_schema_cache_error(e):
                logger.error(f"Error upserting {len(rows)} rows into {table}: {e}")
                raise DestinationError(f"Upsert into {table} failed: {e}") from e

            logger.warning(f"Schema cache error on {table}, refreshing and retrying once: {e}")
            await self.refresh_schema_cache(table)
            try:
                result = await self._upsert_once(table, stamped, conflict_key)
            except Exception as retry_error:
                logger.error(f"Upsert into {table} failed after schema refresh: {retry_error}")
                raise SchemaCacheError(
                    f"Upsert into {table} failed after schema refresh: {retry_error}"
                ) from retry_error
        except DestinationError:
            raise
        except Exception as e:
            logger.error(f"Error upserting {len(rows)} rows into {table}: {e}")
            raise DestinationError(f"Upsert into {table} failed: {e}") from e

        logger.info(f"Upserted {len(rows)} rows into {table}: "
                    f"{result.inserted} inserted, {result.updated} updated")
        return result

    async def count_rows(self, table: str) -> int:
        async with self.engine.connect() as conn:
            result = await conn.execute(sa.text(f"SELECT COUNT(*) FROM {self._quote(table)}"))
            return int(result.scalar_one())
