from promosync.core.config import Settings, settings
from promosync.services.sink.base import SCHEMA_VERSION, Sink
from promosync.services.sink.rest import RestSink
from promosync.services.sink.results import FatalError, Found, LookupResult, NotFound, TransientError
from promosync.services.sink.sql import SqlSink


def build_sink(cfg: Settings = settings) -> Sink:
    """Sink selected by ``SINK_MODE``."""

    if cfg.SINK_MODE == "rest":
        return RestSink.from_settings(cfg)
    return SqlSink.from_settings(cfg)


__all__ = [
    "SCHEMA_VERSION",
    "FatalError",
    "Found",
    "LookupResult",
    "NotFound",
    "RestSink",
    "Sink",
    "SqlSink",
    "TransientError",
    "build_sink",
]
