"""Tests for the destination table: provisioning, column sync and upserts.

Run against in-memory SQLite; the same statements are issued on PostgreSQL
with ARRAY columns in place of JSON.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.exc import OperationalError

from conftest import TABLE

from notion_mirror.core.exceptions import DestinationError, SchemaCacheError
from notion_mirror.schemas.notion import DestinationType
from notion_mirror.services.destination import PROBE_NOTION_ID, is_schema_cache_error
from notion_mirror.services.schema import BASE_COLUMNS, extract_column_definitions

SCHEMA = {
    "Name": "title",
    "Score": "number",
    "Done": "checkbox",
    "Tags": "multi_select",
    "Due": "date",
}


async def _fetch_rows(engine, table=TABLE):
    async with engine.connect() as conn:
        result = await conn.execute(sa.text(f'SELECT * FROM "{table}" ORDER BY notion_id'))
        return [dict(row) for row in result.mappings().all()]


@pytest_asyncio.fixture
async def provisioned(destination):
    """Destination with the base table and the SCHEMA columns in place."""
    await destination.ensure_table_exists(TABLE)
    await destination.create_missing_columns(TABLE, SCHEMA)
    return destination


class TestEnsureTableExists:

    @pytest.mark.asyncio
    async def test_creates_base_table_and_removes_probe(self, destination, engine):
        assert await destination.table_exists(TABLE) is False

        await destination.ensure_table_exists(TABLE)

        assert await destination.table_exists(TABLE) is True
        columns = await destination.get_existing_columns(TABLE)
        assert columns == BASE_COLUMNS
        rows = await _fetch_rows(engine)
        assert all(r["notion_id"] != PROBE_NOTION_ID for r in rows)
        assert rows == []

    @pytest.mark.asyncio
    async def test_is_a_no_op_when_table_exists(self, destination):
        await destination.ensure_table_exists(TABLE)
        await destination.ensure_table_exists(TABLE)
        assert await destination.table_exists(TABLE) is True


class TestCreateMissingColumns:

    @pytest.mark.asyncio
    async def test_adds_columns_for_new_properties(self, destination):
        await destination.ensure_table_exists(TABLE)

        result = await destination.create_missing_columns(TABLE, SCHEMA)

        assert result.created == 5
        assert result.missing == 0
        assert result.existing == len(BASE_COLUMNS)
        assert result.errors == []
        columns = await destination.get_existing_columns(TABLE)
        assert set(columns) >= {"name", "score", "done", "tags", "due"}

    @pytest.mark.asyncio
    async def test_second_run_creates_nothing(self, provisioned):
        with patch.object(provisioned, "_execute_ddl", new_callable=AsyncMock) as ddl:
            result = await provisioned.create_missing_columns(TABLE, SCHEMA)

        assert result.created == 0
        assert result.missing == 0
        assert result.existing == len(BASE_COLUMNS) + len(SCHEMA)
        ddl.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_new_property_is_added(self, provisioned):
        result = await provisioned.create_missing_columns(TABLE, {**SCHEMA, "Priority": "select"})
        assert result.created == 1
        assert result.summary["columns_to_create"][0]["name"] == "priority"

    @pytest.mark.asyncio
    async def test_never_drops_columns(self, provisioned):
        await provisioned.create_missing_columns(TABLE, {"Name": "title"})
        columns = await provisioned.get_existing_columns(TABLE)
        assert "tags" in columns and "score" in columns

    @pytest.mark.asyncio
    async def test_failed_column_is_recorded_and_others_continue(self, destination):
        await destination.ensure_table_exists(TABLE)
        original = destination._execute_ddl

        async def flaky_ddl(statement):
            if "ADD COLUMN score" in statement:
                raise OperationalError(statement, {}, Exception("permission denied"))
            await original(statement)

        with patch.object(destination, "_execute_ddl", side_effect=flaky_ddl), \
                patch("notion_mirror.services.retry.asyncio.sleep", new_callable=AsyncMock):
            result = await destination.create_missing_columns(TABLE, {"Name": "title", "Score": "number"})

        assert result.created == 1
        assert result.missing == 1
        assert result.errors[0]["column"] == "score"

    def test_alter_statement_uses_dialect_types(self, destination):
        (column,) = extract_column_definitions({"Tags": "multi_select"})
        assert column.type == DestinationType.TEXT_ARRAY
        statement = destination.alter_statement(TABLE, column)
        assert statement == 'ALTER TABLE notion_pages ADD COLUMN tags JSON'


class TestUpsertRows:

    def _row(self, notion_id, **values):
        return {
            "notion_id": notion_id,
            "created_at": "2024-01-01T09:00:00.000Z",
            "last_edited_time": "2024-01-02T10:00:00.000Z",
            **values,
        }

    @pytest.mark.asyncio
    async def test_inserts_then_updates(self, provisioned, engine):
        first = await provisioned.upsert_rows(TABLE, [self._row("p1", name="A"), self._row("p2", name="B")])
        assert (first.inserted, first.updated) == (2, 0)

        second = await provisioned.upsert_rows(TABLE, [self._row("p1", name="A2"), self._row("p3", name="C")])
        assert (second.inserted, second.updated) == (1, 1)

        rows = await _fetch_rows(engine)
        assert [(r["notion_id"], r["name"]) for r in rows] == [("p1", "A2"), ("p2", "B"), ("p3", "C")]

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, provisioned, engine):
        batch = [self._row("p1", name="A", score=3, done=True, tags=["x", "y"])]
        await provisioned.upsert_rows(TABLE, batch)
        after_first = await _fetch_rows(engine)

        await provisioned.upsert_rows(TABLE, batch)
        after_second = await _fetch_rows(engine)

        assert len(after_second) == 1
        ignore = {"updated_at"}
        assert {k: v for k, v in after_first[0].items() if k not in ignore} == \
            {k: v for k, v in after_second[0].items() if k not in ignore}

    @pytest.mark.asyncio
    async def test_values_are_stored_with_column_types(self, provisioned, engine):
        await provisioned.upsert_rows(TABLE, [
            self._row("p1", name="Task", score=0, done=False, tags=["a", "b"], due="2024-03-01"),
        ])
        table = await provisioned.get_table(TABLE)
        async with engine.connect() as conn:
            row = (await conn.execute(sa.select(table))).mappings().one()

        assert row["score"] == Decimal("0")
        assert row["done"] is False
        assert row["tags"] == ["a", "b"]
        assert row["due"].year == 2024 and row["due"].month == 3
        assert row["updated_at"] is not None

    @pytest.mark.asyncio
    async def test_unknown_columns_are_dropped(self, provisioned, engine):
        result = await provisioned.upsert_rows(TABLE, [self._row("p1", name="A", not_a_column="x")])
        assert result.inserted == 1
        rows = await _fetch_rows(engine)
        assert "not_a_column" not in rows[0]

    @pytest.mark.asyncio
    async def test_column_added_after_first_write_is_picked_up(self, provisioned, engine):
        await provisioned.upsert_rows(TABLE, [self._row("p1", name="A")])
        await provisioned.create_missing_columns(TABLE, {**SCHEMA, "Owner": "select"})

        await provisioned.upsert_rows(TABLE, [self._row("p1", name="A", owner="sam")])

        rows = await _fetch_rows(engine)
        assert rows[0]["owner"] == "sam"

    @pytest.mark.asyncio
    async def test_empty_batch_is_a_no_op(self, provisioned):
        result = await provisioned.upsert_rows(TABLE, [])
        assert (result.inserted, result.updated) == (0, 0)

    @pytest.mark.asyncio
    async def test_schema_cache_error_refreshes_once(self, provisioned):
        error = OperationalError("INSERT", {}, Exception("table notion_pages has no column named name"))
        original = provisioned._upsert_once
        calls = []

        async def fails_first(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise error
            return await original(*args, **kwargs)

        with patch.object(provisioned, "_upsert_once", side_effect=fails_first), \
                patch.object(provisioned, "refresh_schema_cache", wraps=provisioned.refresh_schema_cache) as refresh:
            result = await provisioned.upsert_rows(TABLE, [self._row("p1", name="A")])

        assert result.inserted == 1
        assert len(calls) == 2
        refresh.assert_called_once_with(TABLE)

    @pytest.mark.asyncio
    async def test_schema_cache_error_twice_is_fatal(self, provisioned):
        error = OperationalError("INSERT", {}, Exception("table notion_pages has no column named name"))
        with patch.object(provisioned, "_upsert_once", new_callable=AsyncMock, side_effect=error):
            with pytest.raises(SchemaCacheError):
                await provisioned.upsert_rows(TABLE, [self._row("p1", name="A")])

    @pytest.mark.asyncio
    async def test_other_failures_become_destination_error(self, provisioned):
        error = OperationalError("INSERT", {}, Exception("disk I/O error"))
        with patch.object(provisioned, "_upsert_once", new_callable=AsyncMock, side_effect=error) as upsert, \
                patch("notion_mirror.services.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(DestinationError):
                await provisioned.upsert_rows(TABLE, [self._row("p1", name="A")])

        assert upsert.await_count == provisioned.policy.max_attempts

    @pytest.mark.asyncio
    async def test_count_rows(self, provisioned):
        await provisioned.upsert_rows(TABLE, [self._row("p1"), self._row("p2")])
        assert await provisioned.count_rows(TABLE) == 2


class TestIsSchemaCacheError:

    def test_markers(self):
        assert is_schema_cache_error(Exception("Could not find the 'x' column in the schema cache"))
        assert is_schema_cache_error(Exception('column "x" of relation "t" does not exist'))
        assert not is_schema_cache_error(Exception("deadlock detected"))
