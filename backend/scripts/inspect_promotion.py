"""Print one promotion as the POS reports it, and which cached items it reaches.

Usage: python scripts/inspect_promotion.py <location_key> <promotion_id>
"""

import asyncio
from datetime import datetime, timezone
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from promosync.core.cache import CacheStore
from promosync.core.config import settings
from promosync.services.sink import build_sink
from promosync.services.source_client import SourceClient


async def main(location_key: str, promotion_id: str):
    sink = build_sink(settings)
    source = SourceClient.from_settings(settings)
    cache = await CacheStore.from_settings(settings)
    try:
        locations = {loc.key: loc for loc in await sink.list_locations()}
        location = locations.get(location_key)
        if location is None:
            print(f"Unknown location {location_key!r}; known: {', '.join(sorted(locations))}")
            return

        promotion = await source.fetch_promotion(location, promotion_id)
        if promotion is None:
            print(f"Promotion {promotion_id} not found at {location.name}")
            return
        print(promotion.model_dump_json(indent=2))
        print("current:", promotion.is_current(datetime.now(timezone.utc)))
        for name, fs in promotion.filter_sets():
            mode = "exclude" if fs.is_exclusion else "include"
            print(f"  {name}: {mode} {len(fs.ids)} ids")

        reached = [
            entry.item.item_id
            for entry in await cache.list_by_location(location.key)
            if any(p.promotion_id == promotion.promotion_id for p in entry.promotions)
        ]
        print(f"cached items carrying it: {len(reached)}")
    finally:
        await source.close()
        await cache.close()
        await sink.close()


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(sys.argv[1], sys.argv[2]))
