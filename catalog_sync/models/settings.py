# catalog_sync/models/settings.py
# Single-row settings tables (id is always 1).
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AppSettingsRecord(Base):
    __tablename__ = "app_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)

    # sources
    xml_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_system_api_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_system_image_base_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # sync options
    only_create_new: Mapped[bool | None] = mapped_column(Boolean, nullable=True)  # legacy
    delete_missing: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    do_create_new: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    do_update_existing: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    update_stock_only: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    update_stock_and_price_only: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    update_images_on_update: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    profit_margin_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    apply_margin_on: Mapped[str | None] = mapped_column(String(16), nullable=True)
    round_to_integer: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    media_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    per_item_delay_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    process_direction: Mapped[str | None] = mapped_column(String(8), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WooSettingsRecord(Base):
    __tablename__ = "woo_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    base_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    consumer_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    consumer_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
