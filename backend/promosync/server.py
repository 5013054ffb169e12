"""Command-line entry point for the cache read API."""

import uvicorn

from promosync.core.config import settings
from promosync.main import build


def main() -> None:
    uvicorn.run(
        build(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
