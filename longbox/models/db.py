"""
SQLAlchemy ORM models for persistent storage.

Rows mirror the collection graph's entities and are keyed by the same
natural keys, so a graph mutation maps onto exactly one row.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class SeriesDB(Base):
    """A series and the provider identifiers it is known by."""

    __tablename__ = "series"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))

    # Sorted list of volume numbers
    volumes: Mapped[list[int]] = mapped_column(JSON, default=list)

    # Provider id -> provider's series identifier
    external_ids: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)

    def __repr__(self) -> str:
        return f"<SeriesDB(key={self.key}, name={self.name})>"


class IssueDB(Base):
    """One logical issue of a series volume."""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("series_key", "volume", "number", name="uq_issue_natural_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_key: Mapped[str] = mapped_column(
        String(255), ForeignKey("series.key", ondelete="CASCADE"), index=True
    )
    volume: Mapped[int] = mapped_column(Integer)
    number: Mapped[str] = mapped_column(String(50))
    publication_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    def __repr__(self) -> str:
        return f"<IssueDB(series={self.series_key}, v{self.volume} #{self.number})>"


class EditionDB(Base):
    """
    Reconciled catalog data for one (issue, edition line).

    Provenance is stored as JSON: field name -> FieldProvenance.to_dict().
    """

    __tablename__ = "editions"
    __table_args__ = (
        UniqueConstraint(
            "series_key", "volume", "number", "edition_line", name="uq_edition_natural_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_key: Mapped[str] = mapped_column(String(255), index=True)
    volume: Mapped[int] = mapped_column(Integer)
    number: Mapped[str] = mapped_column(String(50))
    edition_line: Mapped[str] = mapped_column(String(50))

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    store_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    creators: Mapped[list[str]] = mapped_column(JSON, default=list)
    cover_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    provenance: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<EditionDB(series={self.series_key}, v{self.volume} #{self.number}, "
            f"line={self.edition_line})>"
        )


class OwnershipDB(Base):
    """A user's state for one (issue, edition line)."""

    __tablename__ = "ownership"
    __table_args__ = (
        UniqueConstraint(
            "series_key", "volume", "number", "edition_line", name="uq_ownership_natural_key"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    series_key: Mapped[str] = mapped_column(String(255), index=True)
    volume: Mapped[int] = mapped_column(Integer)
    number: Mapped[str] = mapped_column(String(50))
    edition_line: Mapped[str] = mapped_column(String(50))

    state: Mapped[str] = mapped_column(String(20))
    acquired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disposed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<OwnershipDB(series={self.series_key}, v{self.volume} #{self.number}, "
            f"line={self.edition_line}, state={self.state})>"
        )
