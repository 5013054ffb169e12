"""Relational sink: writes inventories and discounts straight into the CMS database.

Upserts use the dialect's native insert-on-conflict clause so concurrent
writers racing on a unique key resolve to an update instead of an error.
Every public write opens its own transaction; a batch either commits whole
or not at all.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from loguru import logger
from sqlalchemy import Table, delete, inspect, or_, select
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from promosync.core.config import Settings, settings
from promosync.core.db import build_engine, build_session_factory
from promosync.core.exceptions import ConfigError
from promosync.models import Base, Discount, DiscountLocation, Inventory, Store
from promosync.schemas.catalog import CatalogItem, Promotion
from promosync.schemas.location import Location
from promosync.schemas.sync import BatchOutcome
from promosync.services.sink.base import SCHEMA_VERSION
from promosync.services.sink.rows import item_row, naive_utc, promotion_row

_ITEM_KEYS = ("location_id", "inventory_id")
_DISCOUNT_KEYS = ("discount_id",)


def _required_columns() -> dict[str, set[str]]:
    tables = (Store.__table__, Inventory.__table__, Discount.__table__, DiscountLocation.__table__)
    return {t.name: {c.name for c in t.columns} for t in tables}


class SqlSink:
    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        *,
        create_tables: bool = False,
        clock=lambda: datetime.now(timezone.utc),
    ):
        self._engine = engine
        self._sessions = session_factory or build_session_factory(engine)
        self._create_tables = create_tables
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "SqlSink":
        return cls(build_engine(cfg), create_tables=cfg.SINK_CREATE_TABLES)

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    async def close(self) -> None:
        await self._engine.dispose()

    # schema

    async def negotiate_schema(self) -> None:
        """Check (and optionally create) the version 1 tables and columns."""

        def _missing(sync_conn) -> list[str]:
            inspector = inspect(sync_conn)
            present = set(inspector.get_table_names())
            problems = []
            for table, columns in _required_columns().items():
                if table not in present:
                    problems.append(table)
                    continue
                have = {c["name"] for c in inspector.get_columns(table)}
                problems.extend(f"{table}.{col}" for col in sorted(columns - have))
            return problems

        async with self._engine.begin() as conn:
            if self._create_tables:
                await conn.run_sync(Base.metadata.create_all)
            missing = await conn.run_sync(_missing)
        if missing:
            logger.bind(dialect=self.dialect, missing=missing).error("sink_schema_mismatch")
            raise ConfigError(f"sink schema v{SCHEMA_VERSION} mismatch, missing: {', '.join(missing)}")
        logger.bind(dialect=self.dialect, version=SCHEMA_VERSION).info("sink_schema_ok")

    # dialect-specific statements

    def _upsert(self, table: Table, rows: list[dict[str, Any]], keys: Iterable[str]):
        keys = tuple(keys)
        update_cols = [c.name for c in table.columns if c.name not in keys and not c.primary_key]
        if self.dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if self.dialect == "postgresql" else sqlite.insert
            stmt = insert(table).values(rows)
            return stmt.on_conflict_do_update(
                index_elements=list(keys),
                set_={col: stmt.excluded[col] for col in update_cols},
            )
        if self.dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(rows)
            return stmt.on_duplicate_key_update({col: stmt.inserted[col] for col in update_cols})
        raise ConfigError(f"no native upsert for dialect {self.dialect!r}")

    def _insert_ignore(self, table: Table, rows: list[dict[str, Any]], keys: Iterable[str]):
        if self.dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if self.dialect == "postgresql" else sqlite.insert
            return insert(table).values(rows).on_conflict_do_nothing(index_elements=list(keys))
        if self.dialect in ("mysql", "mariadb"):
            return mysql.insert(table).values(rows).prefix_with("IGNORE")
        raise ConfigError(f"no native upsert for dialect {self.dialect!r}")

    # locations

    async def list_locations(self) -> list[Location]:
        async with self._sessions() as session:
            stores = (await session.execute(select(Store).order_by(Store.id))).scalars().all()
        return [
            Location(
                id=str(s.id),
                name=s.name,
                external_store_id=s.external_store_id,
                api_key=s.api_key,
                address=s.address,
                is_active=s.is_active,
            )
            for s in stores
            if s.is_active
        ]

    # items

    async def clear_items(self, location_id: str) -> int:
        async with self._sessions() as session, session.begin():
            result = await session.execute(delete(Inventory).where(Inventory.location_id == location_id))
        return result.rowcount or 0

    async def write_items(self, location_id: str, batch: Sequence[CatalogItem]) -> BatchOutcome:
        if not batch:
            return BatchOutcome()
        now = self._clock()
        # last occurrence wins within a batch
        rows = list({item.item_id: item_row(location_id, item, now) for item in batch}.values())
        async with self._sessions() as session, session.begin():
            await session.execute(self._upsert(Inventory.__table__, rows, _ITEM_KEYS))
        return BatchOutcome(written=len(rows), skipped=len(batch) - len(rows))

    # promotions

    async def detach_promotions(self, location_id: str) -> int:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(DiscountLocation).where(DiscountLocation.location_id == location_id)
            )
        return result.rowcount or 0

    async def write_promotions(self, location_id: str, batch: Sequence[Promotion]) -> BatchOutcome:
        if not batch:
            return BatchOutcome()
        now = self._clock()
        rows = list({p.promotion_id: promotion_row(p, now) for p in batch}.values())
        links = [{"discount_id": row["discount_id"], "location_id": location_id} for row in rows]
        async with self._sessions() as session, session.begin():
            await session.execute(self._upsert(Discount.__table__, rows, _DISCOUNT_KEYS))
            await session.execute(
                self._insert_ignore(DiscountLocation.__table__, links, ("discount_id", "location_id"))
            )
        return BatchOutcome(written=len(rows), skipped=len(batch) - len(rows))

    async def purge_promotions(self, now: datetime) -> int:
        cutoff = naive_utc(now)
        linked = select(DiscountLocation.discount_id)
        async with self._sessions() as session, session.begin():
            stale = (
                await session.execute(
                    select(Discount.discount_id).where(
                        or_(
                            Discount.valid_until < cutoff,
                            Discount.is_deleted.is_(True),
                            Discount.discount_id.not_in(linked),
                        )
                    )
                )
            ).scalars().all()
            if not stale:
                return 0
            await session.execute(delete(DiscountLocation).where(DiscountLocation.discount_id.in_(stale)))
            await session.execute(delete(Discount).where(Discount.discount_id.in_(stale)))
        logger.bind(count=len(stale)).info("sink_promotions_purged")
        return len(stale)

    # inspection

    async def list_items(self, location_id: str) -> list[Inventory]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Inventory).where(Inventory.location_id == location_id).order_by(Inventory.inventory_id)
            )
            return list(result.scalars().all())

    async def list_promotions(self, location_id: Optional[str] = None) -> list[Discount]:
        stmt = select(Discount).order_by(Discount.discount_id)
        if location_id is not None:
            stmt = stmt.join(DiscountLocation, DiscountLocation.discount_id == Discount.discount_id).where(
                DiscountLocation.location_id == location_id
            )
        async with self._sessions() as session:
            return list((await session.execute(stmt)).scalars().all())
