"""ORM model for the in-database reuse metadata record."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from apps.api.app.db.base import Base

REUSE_TABLE_NAME = "____dbprep____"
REUSE_TABLE_VERSION = "1"


class ReuseMetaData(Base):
    __tablename__ = REUSE_TABLE_NAME

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reuse_table_version: Mapped[str] = mapped_column(String(16), nullable=False)
    orig_db_name: Mapped[str] = mapped_column(String(255), nullable=False)
    build_checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scenario_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transaction_reusable: Mapped[int | None] = mapped_column(Integer, nullable=True)
    journal_reusable: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validation_passed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_used: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
