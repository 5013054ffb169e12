"""Script to clear cached item -> promotion entries."""

import asyncio
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from promosync.core.cache import CacheStore


async def clear_cache(location_id: str | None = None):
    """Clear one location's entries, or every entry when no location is given."""
    cache = await CacheStore.from_settings()
    try:
        if location_id:
            count = await cache.evict(location_id)
            print(f"Cleared {count} cache entries for location {location_id} ({cache.backend})")
        else:
            count = await cache.clear_all()
            print(f"Cleared {count} cache entries ({cache.backend})")
    finally:
        await cache.close()


if __name__ == "__main__":
    asyncio.run(clear_cache(sys.argv[1] if len(sys.argv) > 1 else None))
