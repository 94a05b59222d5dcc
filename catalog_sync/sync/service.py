#==========================================================================================
# catalog_sync/sync/service.py
# Wires one sync run together: settings repository → Woo client → source adapter → engine
# → report store. Routes only talk to SyncService.
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

from catalog_sync.config import settings
from catalog_sync.errors import FatalError
from catalog_sync.settings_store import SettingsRepository, WooSettings
from catalog_sync.sources.manual import ManualProductInput, load_manual_batch
from catalog_sync.sources.new_system import (
    fetch_new_system_products,
    load_new_system_batch,
    map_new_system_to_products,
    validate_raw,
)
from catalog_sync.sources.xml_feed import load_xml_batch
from catalog_sync.sync.engine import SyncEngine
from catalog_sync.sync.events import Emit, SyncEvent
from catalog_sync.sync.options import SyncOptions, migrate_options
from catalog_sync.sync.report import ReportStore, SyncReport
from catalog_sync.woocommerce import WooClient, build_woo_client

logger = logging.getLogger("uvicorn.error")

PREVIEW_LIMIT = 200

# one run at a time against the catalog; a second caller waits for the first
_RUN_LOCK = asyncio.Lock()

ClientFactory = Callable[[WooSettings], WooClient]


def default_client_factory(creds: WooSettings) -> WooClient:
    return build_woo_client(creds.base_url, creds.consumer_key, creds.consumer_secret)


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: Literal["new_system", "xml", "manual"] = "new_system"
    api_url: Optional[str] = None
    image_base_url: Optional[str] = None
    file_path: Optional[str] = None
    xml_path: Optional[str] = None
    manual: Optional[ManualProductInput] = None
    options: Optional[Dict[str, Any]] = None


def _log_event(ev: SyncEvent) -> None:
    if ev.type in ("error", "skip_conflict_deferred", "giveup_deferred"):
        logger.warning("[SYNC] %s %s", ev.type, ev.fields)
    elif ev.type == "fatal":
        logger.error("[SYNC] fatal: %s", ev.get("message"))
    else:
        logger.debug("[SYNC] %s %s", ev.type, ev.fields)


class SyncService:
    def __init__(
        self,
        settings_repo: SettingsRepository,
        report_store: ReportStore,
        data_dir: str,
        *,
        client_factory: ClientFactory = default_client_factory,
        engine_kwargs: Optional[Dict[str, Any]] = None,
    ):
        self.settings_repo = settings_repo
        self.report_store = report_store
        self.data_dir = data_dir
        self.client_factory = client_factory
        self.engine_kwargs = engine_kwargs or {}
        self.last_report: Optional[SyncReport] = None

    async def open_client(self) -> WooClient:
        creds = await self.settings_repo.resolve_woo_credentials()
        if not creds.complete:
            raise FatalError("WooCommerce settings are missing (base URL, consumer key, consumer secret)")
        return self.client_factory(creds)

    async def _options(self, raw: Optional[Dict[str, Any]]) -> SyncOptions:
        if raw is not None:
            return migrate_options(raw)
        return await self.settings_repo.get_sync_options()

    async def _loader(self, req: SyncRequest) -> Callable[[Emit], Any]:
        """Pick the source adapter; missing source configuration is fatal."""
        app = await self.settings_repo.get_app_settings()

        if req.source == "manual":
            if req.manual is None:
                raise FatalError("Manual product data is required")
            manual = req.manual
            return lambda emit: load_manual_batch(emit, manual)

        if req.source == "xml":
            xml_path = req.xml_path or app.xml_path or settings.XML_PATH
            if not xml_path:
                raise FatalError("XML path is not configured")

            async def _xml(emit: Emit):
                batch = await asyncio.to_thread(load_xml_batch, xml_path)
                emit("info", message=f"XML records: {batch.raw_count}, valid: {len(batch.products)}, "
                                     f"invalid: {batch.invalid_count}")
                return batch
            return _xml

        api_url = req.api_url or app.new_system_api_url or settings.NEW_SYSTEM_API_URL
        image_base_url = req.image_base_url or app.new_system_image_base_url or settings.NEW_SYSTEM_IMAGE_BASE_URL
        file_path = req.file_path or ""
        if not file_path and not api_url:
            raise FatalError("API URL is required")
        return lambda emit: load_new_system_batch(
            emit,
            data_dir=self.data_dir,
            api_url=api_url,
            image_base_url=image_base_url,
            file_path=file_path,
        )

    async def stream_sync(self, req: SyncRequest) -> AsyncIterator[SyncEvent]:
        """Events of one run. Configuration problems surface as a single `fatal` event."""
        async with _RUN_LOCK:
            try:
                options = await self._options(req.options)
                loader = await self._loader(req)
                client = await self.open_client()
            except (FatalError, ValueError) as e:
                logger.error("[SYNC] cannot start: %s", e)
                yield SyncEvent("fatal", {"message": str(e)})
                return

            logger.info("[SYNC] run starting (source=%s)", req.source)
            try:
                engine = SyncEngine(
                    client,
                    options,
                    report_store=self.report_store,
                    listener=_log_event,
                    **self.engine_kwargs,
                )
                async for ev in engine.run(loader):
                    yield ev
                self.last_report = engine.report
            finally:
                await client.aclose()

    async def run_blocking_xml(self) -> SyncReport:
        """Legacy one-shot XML sync with the stored settings."""
        self.last_report = None
        fatal: Optional[str] = None
        # drain fully so the run lock is released before raising
        async for ev in self.stream_sync(SyncRequest(source="xml")):
            if ev.type == "fatal":
                fatal = ev.get("message") or "sync failed"
        if fatal:
            raise RuntimeError(fatal)
        return self.last_report or SyncReport()

    # ---- previews ----

    async def preview_xml(self, xml_path: Optional[str] = None) -> List[Dict[str, Any]]:
        app = await self.settings_repo.get_app_settings()
        path = xml_path or app.xml_path or settings.XML_PATH
        batch = await asyncio.to_thread(load_xml_batch, path)
        return [p.model_dump(exclude_none=True) for p in batch.products[:PREVIEW_LIMIT]]

    async def preview_new_system(self, api_url: Optional[str] = None,
                                 image_base_url: Optional[str] = None) -> List[Dict[str, Any]]:
        app = await self.settings_repo.get_app_settings()
        raw = await fetch_new_system_products(api_url or app.new_system_api_url or settings.NEW_SYSTEM_API_URL)
        valid, _ = validate_raw(raw[:PREVIEW_LIMIT])
        base = image_base_url or app.new_system_image_base_url or settings.NEW_SYSTEM_IMAGE_BASE_URL
        products = map_new_system_to_products(valid, base)
        return [p.model_dump(exclude_none=True) for p in products]
