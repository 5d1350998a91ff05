import asyncio
import os
import sys

# Add parent directory to path to import parley
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from parley.config import get_settings
from parley.stores import open_stores, close_stores
from parley.services.graph import GraphService


async def recover():
    """Finish friend removals left behind by a crashed process, without starting the API."""
    settings = get_settings()
    print(f"🔍 Checking pending friend removals ({settings.store_backend} store)...")

    relationships, conversations = await open_stores(settings)
    try:
        pending = await relationships.list_pending_removals()
        if not pending:
            print("   ✅ Nothing to recover.")
            return

        for removal in pending:
            print(f"   Found {removal.pair_key} (started {removal.started_at.isoformat()})")

        graph = GraphService(
            relationships,
            conversations,
            retry_attempts=settings.store_retry_attempts,
            retry_delay=settings.store_retry_delay_seconds,
        )
        recovered = await graph.recover_pending_removals()
        print(f"   ✨ Completed {recovered} removals.")
    finally:
        await close_stores(settings)


if __name__ == "__main__":
    asyncio.run(recover())
