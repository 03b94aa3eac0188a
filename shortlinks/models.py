"""SQLAlchemy ORM models for the short-link service.

This module defines the database schema using SQLAlchemy declarative models
with the indexing and referential constraints the resolution path relies on.

Data Model Layout
=================
::
    short_urls table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(10) UNIQUE, INDEXED)
    ├─ original_url (VARCHAR(2048) NOT NULL)
    ├─ owner_id (VARCHAR(64) NULL, INDEXED)
    ├─ click_count (INTEGER DEFAULT 0)
    ├─ expires_at (TIMESTAMPTZ NULL)
    └─ created_at (TIMESTAMPTZ NOT NULL)

    clicks table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ url_id (FK short_urls.id ON DELETE CASCADE, INDEXED)
    ├─ clicked_at (TIMESTAMPTZ NOT NULL)
    ├─ user_agent (TEXT NULL)
    ├─ referer (TEXT NULL)
    └─ ip_address (VARCHAR(45) NULL)

Class Relationship Diagram
=========================
::
    ShortUrl 1 ───< Click

Key Behaviours
===============
- short_code carries the unique constraint that decides custom-code races.
- click_count is only ever changed by an in-database increment.
- Deleting a ShortUrl removes its clicks.
- Timestamps are produced in UTC on the Python side; SQLite hands them back
  naive, so readers go through ``as_utc``.

Classes:
    ShortUrl:  A short code mapped to its target URL.
    Click:  One recorded redirect.
"""

import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shortlinks.database import Base

__all__ = ["Click", "ShortUrl", "as_utc", "utcnow"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)


class ShortUrl(Base):
    __tablename__ = "short_urls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(10), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    owner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    click_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    clicks: Mapped[list["Click"]] = relationship(
        back_populates="url",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def is_expired(self, now: datetime.datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) < (now or utcnow())

    def __repr__(self) -> str:
        return f"<ShortUrl(id={self.id}, short_code='{self.short_code}', click_count={self.click_count})>"


class Click(Base):
    __tablename__ = "clicks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    url_id: Mapped[int] = mapped_column(
        ForeignKey("short_urls.id", ondelete="CASCADE"), index=True, nullable=False
    )
    clicked_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    referer: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    url: Mapped[ShortUrl] = relationship(back_populates="clicks")

    def __repr__(self) -> str:
        return f"<Click(id={self.id}, url_id={self.url_id}, clicked_at={self.clicked_at})>"
