#!/usr/bin/env python3
"""
List the Notion databases shared with the configured integration.
Use it to find the ID to put in NOTION_DATABASE_ID.
"""

import asyncio
from datetime import datetime

from notion_mirror.core.config import get_settings
from notion_mirror.services.notion import NotionClient


def _title(database: dict) -> str:
    parts = database.get("title") or []
    return "".join(p.get("plain_text", "") for p in parts) or "Untitled Database"


async def main():
    settings = get_settings()
    if not settings.notion_token:
        print("NOTION_TOKEN is not set")
        return

    client = NotionClient(settings.notion_token, notion_version=settings.notion_version)
    try:
        print("Searching for accessible databases...")
        databases = await client.search_databases()
    finally:
        await client.close()

    if not databases:
        print("\nNo databases found. Share a database with your integration:")
        print("  1. Open the database in Notion")
        print("  2. Click 'Share' and invite your integration")
        return

    print(f"Found {len(databases)} databases:")
    for index, database in enumerate(databases, start=1):
        database_id = database["id"]
        last_edited = database.get("last_edited_time")
        if last_edited:
            last_edited = datetime.fromisoformat(last_edited.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M")

        print(f"\n{index}. {_title(database)}")
        print(f"   ID: {database_id}")
        print(f"   Last edited: {last_edited}")
        print(f"   URL: https://www.notion.so/{database_id.replace('-', '')}")
        properties = database.get("properties") or {}
        if properties:
            print(f"   Properties: {', '.join(properties)}")

    print("\nSet one of the IDs above as NOTION_DATABASE_ID.")


if __name__ == "__main__":
    asyncio.run(main())
