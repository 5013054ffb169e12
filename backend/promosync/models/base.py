"""Shared declarative base for the sink tables.

A single ``Base`` keeps the metadata in one place so schema negotiation and
test fixtures (``create_all``) see every table.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass
