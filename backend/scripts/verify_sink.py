import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from promosync.core.config import settings
from promosync.services.sink import build_sink

async def main():
    sink = build_sink(settings)
    try:
        print("SINK_MODE:", settings.SINK_MODE)
        await sink.negotiate_schema()
        print("schema: ok")

        locations = await sink.list_locations()
        print("locations:", len(locations))
        for loc in locations:
            missing = loc.missing_credentials()
            print(f"  {loc.key:<24} {loc.name:<32} {'missing ' + ', '.join(missing) if missing else 'ready'}")
    finally:
        await sink.close()

asyncio.run(main())
