"""SQLAlchemy ORM models for the URL shortener service.

Data Model Layout
=================
::
    short_urls table
    ├─ id (BIGINT PRIMARY KEY, auto-increment)
    ├─ long_url (VARCHAR(2048) NOT NULL)
    ├─ created_at (TIMESTAMPTZ NOT NULL, DEFAULT NOW())
    └─ click_count (INTEGER NOT NULL, DEFAULT 0)

Key Behaviours
===============
- id is issued by the database and is the only input of the short code encoder;
  short codes are never stored.
- created_at is set by the database at insert time and never updated.
- click_count is only changed through ``click_count = click_count + 1`` updates.

Classes:
    ShortUrl:  A shortened URL with click accounting.
"""

import datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["LONG_URL_MAX_LENGTH", "ShortUrl"]

LONG_URL_MAX_LENGTH = 2048


class ShortUrl(Base):
    __tablename__ = "short_urls"

    # SQLite only auto-increments INTEGER PRIMARY KEY columns.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    long_url: Mapped[str] = mapped_column(String(LONG_URL_MAX_LENGTH), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    click_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    def __repr__(self) -> str:
        return f"<ShortUrl(id={self.id}, click_count={self.click_count})>"
