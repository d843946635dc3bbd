"""Notion API client (read-only)."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional, Union

import httpx

from notion_mirror.core.exceptions import NotionAPIError, SourceUnavailable
from notion_mirror.schemas.notion import Record, isoformat_z
from notion_mirror.services.retry import RetryPolicy, run_with_retry

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"


def build_incremental_filter(since: Union[datetime, str]) -> dict:
    """Server-side filter for pages edited on or after `since`."""
    since_str = isoformat_z(since) if isinstance(since, datetime) else since
    return {
        "timestamp": "last_edited_time",
        "last_edited_time": {"on_or_after": since_str},
    }


class NotionClient:
    """Async client for the Notion API."""

    def __init__(
        self,
        token: str,
        policy: Optional[RetryPolicy] = None,
        notion_version: str = "2022-06-28",
        page_delay: float = 0.1,
        base_url: str = NOTION_API_URL,
    ):
        self.token = token
        self.policy = policy or RetryPolicy()
        self.notion_version = notion_version
        self.page_delay = page_delay
        self.base_url = base_url.rstrip('/')
        self.client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self.client is None:
            self.client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Notion-Version": self.notion_version,
                    "Content-Type": "application/json",
                },
                timeout=30.0
            )
        return self.client

    async def close(self):
        """Close the HTTP client."""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        """Send one request; non-2xx responses raise NotionAPIError."""
        client = await self._get_client()
        response = await client.request(method, f"{self.base_url}{path}", json=json)

        if response.status_code >= 400:
            code = None
            message = response.text[:200]
            try:
                body = response.json()
                code = body.get("code")
                message = body.get("message") or message
            except ValueError:
                pass
            raise NotionAPIError(
                f"Notion API {method} {path} returned HTTP {response.status_code}: {message}",
                status=response.status_code,
                code=code,
            )

        return response.json()

    async def get_database(self, database_id: str) -> dict[str, Any]:
        """Fetch the raw database object."""
        return await run_with_retry(
            lambda: self._request("GET", f"/databases/{database_id}"),
            self.policy,
            description=f"get database {database_id}",
        )

    async def get_schema(self, database_id: str) -> dict[str, str]:
        """
        Fetch the collection schema.

        Returns:
            Ordered mapping of property name to Notion property type.
        """
        try:
            database = await self.get_database(database_id)
        except Exception as e:
            logger.error(f"Error fetching database schema for {database_id}: {e}")
            raise SourceUnavailable(
                f"Could not fetch schema for database {database_id}: {e}",
                code=getattr(e, "code", None),
            ) from e

        properties = database.get("properties") or {}
        schema = {name: prop.get("type", "unknown") for name, prop in properties.items()}
        logger.info(f"Database schema retrieved for {database_id}: {len(schema)} properties")
        return schema

    async def query_page(
        self,
        database_id: str,
        page_size: int = 100,
        start_cursor: Optional[str] = None,
        since: Union[datetime, str, None] = None,
    ) -> dict[str, Any]:
        """Fetch one page of query results (retried)."""
        body: dict[str, Any] = {
            "page_size": page_size,
            "sorts": [{"timestamp": "last_edited_time", "direction": "ascending"}],
        }
        if start_cursor:
            body["start_cursor"] = start_cursor
        if since:
            body["filter"] = build_incremental_filter(since)

        response = await run_with_retry(
            lambda: self._request("POST", f"/databases/{database_id}/query", json=body),
            self.policy,
            description=f"query database {database_id}",
        )
        logger.debug(
            f"Fetched {len(response.get('results') or [])} pages from {database_id} "
            f"(has_more={response.get('has_more')})"
        )
        return response

    async def get_all_records(
        self,
        database_id: str,
        page_size: int = 100,
        since: Union[datetime, str, None] = None,
        max_records: Optional[int] = None,
    ) -> list[Record]:
        """
        Fetch every record, following cursors until none is returned.

        Args:
            database_id: Notion database ID
            page_size: Records per request (Notion caps this at 100)
            since: Only records last edited on or after this time
            max_records: Stop requesting further pages once this many are fetched
        """
        records: list[Record] = []
        cursor: Optional[str] = None

        try:
            while True:
                response = await self.query_page(database_id, page_size, cursor, since)
                records.extend(Record.from_page(page) for page in response.get("results") or [])

                cursor = response.get("next_cursor") if response.get("has_more") else None
                if not cursor:
                    break
                if max_records is not None and len(records) >= max_records:
                    logger.info(f"Reached max_records={max_records}, not requesting more pages")
                    break

                # Stay under Notion's rate limit
                await asyncio.sleep(self.page_delay)
        except Exception as e:
            logger.error(f"Error fetching pages from {database_id} after {len(records)} records: {e}")
            raise SourceUnavailable(
                f"Could not fetch records for database {database_id}: {e}",
                code=getattr(e, "code", None),
            ) from e

        logger.info(f"Fetched {len(records)} records from {database_id}"
                    + (f" edited since {since}" if since else ""))
        return records

    async def search_databases(self, query: str = "") -> list[dict[str, Any]]:
        """List databases shared with the integration."""
        results = []
        cursor = None
        while True:
            body: dict[str, Any] = {"filter": {"property": "object", "value": "database"}, "page_size": 100}
            if query:
                body["query"] = query
            if cursor:
                body["start_cursor"] = cursor
            response = await run_with_retry(
                lambda: self._request("POST", "/search", json=body),
                self.policy,
                description="search databases",
            )
            results.extend(response.get("results") or [])
            cursor = response.get("next_cursor") if response.get("has_more") else None
            if not cursor:
                return results
            await asyncio.sleep(self.page_delay)

    async def validate_token(self) -> bool:
        """
        Check the integration token is accepted.

        Returns False only when Notion rejects the token (401/403). Any other
        failure means Notion could not be asked and raises SourceUnavailable.
        """
        try:
            await run_with_retry(lambda: self._request("GET", "/users/me"), self.policy, description="validate token")
        except NotionAPIError as e:
            if e.status in (401, 403):
                logger.error(f"Invalid Notion token: {e}")
                return False
            raise SourceUnavailable(f"Could not validate Notion token: {e}", code=e.code) from e
        except Exception as e:
            raise SourceUnavailable(f"Could not validate Notion token: {e}") from e

        logger.info("Notion token validated successfully")
        return True
