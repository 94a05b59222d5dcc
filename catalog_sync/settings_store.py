#===========================================================================
# catalog_sync/settings_store.py
# Configuration repository: persisted app settings (sources + sync options)
# and WooCommerce credentials. Passed explicitly to whoever needs it.
#===========================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel, to_snake
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import settings
from catalog_sync.models.settings import AppSettingsRecord, WooSettingsRecord
from catalog_sync.sync.options import SyncOptions, migrate_options

logger = logging.getLogger("uvicorn.error")

_ROW_ID = 1

SYNC_OPTION_FIELDS = (
    "only_create_new",
    "delete_missing",
    "do_create_new",
    "do_update_existing",
    "update_stock_only",
    "update_stock_and_price_only",
    "update_images_on_update",
    "profit_margin_percent",
    "apply_margin_on",
    "round_to_integer",
    "media_mode",
    "limit",
    "per_item_delay_ms",
    "process_direction",
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AppSettings(_CamelModel):
    xml_path: Optional[str] = None
    new_system_api_url: Optional[str] = None
    new_system_image_base_url: Optional[str] = None

    only_create_new: Optional[bool] = None
    delete_missing: Optional[bool] = None
    do_create_new: Optional[bool] = None
    do_update_existing: Optional[bool] = None
    update_stock_only: Optional[bool] = None
    update_stock_and_price_only: Optional[bool] = None
    update_images_on_update: Optional[bool] = None
    profit_margin_percent: Optional[float] = None
    apply_margin_on: Optional[str] = None
    round_to_integer: Optional[bool] = None
    media_mode: Optional[str] = None
    limit: Optional[int] = None
    per_item_delay_ms: Optional[int] = None
    process_direction: Optional[str] = None

    def sync_options(self) -> SyncOptions:
        raw = {name: getattr(self, name) for name in SYNC_OPTION_FIELDS}
        return migrate_options(raw)


class WooSettings(_CamelModel):
    base_url: Optional[str] = None
    consumer_key: Optional[str] = None
    consumer_secret: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.base_url and self.consumer_key and self.consumer_secret)

    def public(self) -> Dict[str, Any]:
        """Safe to return over HTTP: the secret is never echoed back."""
        return {
            "baseUrl": self.base_url or "",
            "consumerKey": self.consumer_key or "",
            "hasSecret": bool(self.consumer_secret),
        }


M = TypeVar("M", bound=_CamelModel)


def _patch_model(model: Type[M], patch: Mapping[str, Any]) -> M:
    """Validate a partial payload; only keys actually sent end up in model_fields_set."""
    data = {to_snake(str(k)): v for k, v in (patch or {}).items()}
    return model.model_validate(data)


class SettingsRepository:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def _row(self, session: AsyncSession, record_cls):
        row = await session.get(record_cls, _ROW_ID)
        if row is None:
            row = record_cls(id=_ROW_ID)
            session.add(row)
        return row

    # ---- app settings ----

    async def get_app_settings(self) -> AppSettings:
        async with self._sessionmaker() as session:
            row = await session.get(AppSettingsRecord, _ROW_ID)
            if row is None:
                return AppSettings()
            return AppSettings.model_validate(
                {name: getattr(row, name) for name in AppSettings.model_fields}
            )

    async def save_app_settings(self, patch: Mapping[str, Any]) -> AppSettings:
        incoming = _patch_model(AppSettings, patch)
        # reject bad option values before anything is written
        merged = (await self.get_app_settings()).model_copy(
            update={k: getattr(incoming, k) for k in incoming.model_fields_set}
        )
        merged.sync_options()
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await self._row(session, AppSettingsRecord)
                for name in incoming.model_fields_set:
                    setattr(row, name, getattr(incoming, name))
        logger.info("[SETTINGS] app settings saved (%s)", ", ".join(sorted(incoming.model_fields_set)) or "no fields")
        return merged

    async def get_sync_options(self) -> SyncOptions:
        return (await self.get_app_settings()).sync_options()

    # ---- WooCommerce credentials ----

    async def get_woo_settings(self) -> WooSettings:
        async with self._sessionmaker() as session:
            row = await session.get(WooSettingsRecord, _ROW_ID)
            if row is None:
                return WooSettings()
            return WooSettings(
                base_url=row.base_url,
                consumer_key=row.consumer_key,
                consumer_secret=row.consumer_secret,
            )

    async def save_woo_settings(self, patch: Mapping[str, Any]) -> WooSettings:
        incoming = _patch_model(WooSettings, patch)
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await self._row(session, WooSettingsRecord)
                for name in incoming.model_fields_set:
                    value = getattr(incoming, name)
                    if name == "base_url" and value:
                        value = value.rstrip("/")
                    setattr(row, name, value)
        logger.info("[SETTINGS] woo settings saved")
        return await self.get_woo_settings()

    async def resolve_woo_credentials(self) -> WooSettings:
        """Stored credentials win; environment fills whatever is missing."""
        stored = await self.get_woo_settings()
        return WooSettings(
            base_url=stored.base_url or settings.WC_BASE_URL or None,
            consumer_key=stored.consumer_key or settings.WC_API_KEY or None,
            consumer_secret=stored.consumer_secret or settings.WC_API_SECRET or None,
        )
