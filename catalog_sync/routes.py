#=======================================================================================
# catalog_sync/routes.py
# FastAPI routes: catalog sync (NDJSON stream + legacy blocking XML), previews, uploads,
# run reports, settings, bulk operations and the importer CSV export.
#
# Every route lives under /api/* and requires HTTP Basic (admin).
# In main_app.py, include with NO extra prefix:
#   from catalog_sync.routes import router as api_router
#   app.include_router(api_router)
#=======================================================================================

import logging
import os
import secrets
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

from catalog_sync.config import settings
from catalog_sync.db import get_sessionmaker
from catalog_sync.errors import FatalError, RemoteError
from catalog_sync.export_csv import export_file_path, export_new_system_csv
from catalog_sync.ops import PriceOpsOptions, delete_all, increase_prices_globally
from catalog_sync.settings_store import SettingsRepository
from catalog_sync.sources.new_system import save_upload
from catalog_sync.sync.events import SyncEvent, encode_ndjson
from catalog_sync.sync.report import ReportStore
from catalog_sync.sync.service import SyncRequest, SyncService

logger = logging.getLogger("uvicorn.error")

NDJSON = "application/x-ndjson"
_NO_CACHE = {"Cache-Control": "no-cache, no-store, max-age=0"}

# ---------------------------
# HTTP Basic (admin)
# ---------------------------
security = HTTPBasic()


def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )


router = APIRouter(prefix="/api", tags=["Catalog Sync"], dependencies=[Depends(verify_admin)])

# ---------------------------
# Dependencies (overridden in tests)
# ---------------------------


def get_settings_repo() -> SettingsRepository:
    return SettingsRepository(get_sessionmaker())


def get_report_store() -> ReportStore:
    return ReportStore(os.path.join(settings.DATA_DIR, "reports"), settings.REPORT_RETENTION)


def get_service(
    repo: SettingsRepository = Depends(get_settings_repo),
    store: ReportStore = Depends(get_report_store),
) -> SyncService:
    return SyncService(repo, store, settings.DATA_DIR)


# ---------------------------
# Helpers
# ---------------------------


async def _ndjson(events: AsyncIterator[SyncEvent]) -> AsyncIterator[bytes]:
    async for ev in events:
        yield encode_ndjson(ev)


def _stream(events: AsyncIterator[SyncEvent]) -> StreamingResponse:
    return StreamingResponse(_ndjson(events), media_type=NDJSON, headers=_NO_CACHE)


# ---------------------------
# Sync
# ---------------------------


@router.post("/sync/stream")
async def sync_stream(req: SyncRequest, service: SyncService = Depends(get_service)):
    """Run a sync and stream its events as NDJSON."""
    logger.info("[SYNC] stream requested (source=%s)", req.source)
    return _stream(service.stream_sync(req))


@router.get("/sync")
async def sync_blocking(service: SyncService = Depends(get_service)):
    """Legacy: XML sync with stored settings, answered once the run is over."""
    try:
        report = await service.run_blocking_xml()
    except Exception as e:
        logger.error("[SYNC] blocking XML sync failed: %s", e)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    return {"ok": True, "report": report.to_wire()}


# ---------------------------
# Previews / uploads
# ---------------------------


@router.get("/preview/xml")
async def preview_xml(
    xml_path: Optional[str] = Query(None),
    service: SyncService = Depends(get_service),
):
    try:
        items = await service.preview_xml(xml_path)
    except FatalError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"count": len(items), "items": items}


@router.get("/preview/new-system")
async def preview_new_system(
    api_url: Optional[str] = Query(None),
    image_base_url: Optional[str] = Query(None),
    service: SyncService = Depends(get_service),
):
    try:
        items = await service.preview_new_system(api_url, image_base_url)
    except FatalError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"count": len(items), "items": items}


@router.post("/new-system/upload")
async def upload_new_system_file(
    file: UploadFile = File(...),
    service: SyncService = Depends(get_service),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="File not found")
    file_path = save_upload(service.data_dir, file.filename, content)
    return {"ok": True, "file_path": file_path}


# ---------------------------
# Reports
# ---------------------------


@router.get("/reports")
async def list_reports(store: ReportStore = Depends(get_report_store)):
    return {"files": store.list_reports()}


@router.get("/reports/latest")
async def latest_report(store: ReportStore = Depends(get_report_store)):
    return store.get_last_report()


@router.get("/reports/{filename}")
async def get_report(filename: str, store: ReportStore = Depends(get_report_store)):
    try:
        data = store.get_report_by_file(filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if data is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return data


# ---------------------------
# Settings
# ---------------------------


@router.get("/settings/app")
async def get_app_settings(repo: SettingsRepository = Depends(get_settings_repo)):
    app_settings = await repo.get_app_settings()
    return {
        "settings": app_settings.model_dump(by_alias=True),
        "options": app_settings.sync_options().to_wire(),
    }


@router.post("/settings/app")
async def save_app_settings(
    payload: Dict[str, Any] = Body(...),
    repo: SettingsRepository = Depends(get_settings_repo),
):
    try:
        saved = await repo.save_app_settings(payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, "settings": saved.model_dump(by_alias=True)}


@router.get("/settings/woo")
async def get_woo_settings(repo: SettingsRepository = Depends(get_settings_repo)):
    return (await repo.get_woo_settings()).public()


@router.post("/settings/woo")
async def save_woo_settings(
    payload: Dict[str, Any] = Body(...),
    repo: SettingsRepository = Depends(get_settings_repo),
):
    try:
        saved = await repo.save_woo_settings(payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, **saved.public()}


# ---------------------------
# Bulk operations
# ---------------------------


@router.post("/ops/increase-prices")
async def ops_increase_prices(opts: PriceOpsOptions, service: SyncService = Depends(get_service)):
    try:
        client = await service.open_client()
    except FatalError as e:
        raise HTTPException(status_code=400, detail=str(e))
    try:
        result = await increase_prices_globally(client, opts)
    except RemoteError as e:
        return JSONResponse(status_code=500, content={"ok": False, "error": str(e)})
    finally:
        await client.aclose()
    return {"ok": True, **result, "percent": opts.percent, "applyOn": opts.apply_on}


@router.post("/ops/delete-all")
async def ops_delete_all(service: SyncService = Depends(get_service)):
    try:
        client = await service.open_client()
    except FatalError as e:
        raise HTTPException(status_code=400, detail=str(e))

    async def events() -> AsyncIterator[SyncEvent]:
        try:
            log_dir = os.path.join(service.data_dir, "uploads", "delete-all")
            async for ev in delete_all(client, log_dir, store_url=client.base_url):
                yield ev
        finally:
            await client.aclose()

    logger.warning("[OPS] delete-all requested")
    return _stream(events())


# ---------------------------
# CSV export (WooCommerce importer format)
# ---------------------------


class ExportCsvRequest(BaseModel):
    json_path: str
    sample_csv_path: Optional[str] = None
    image_base_url: Optional[str] = None


@router.post("/export-csv")
async def export_csv(req: ExportCsvRequest, service: SyncService = Depends(get_service)):
    try:
        result = export_new_system_csv(
            service.data_dir,
            req.json_path,
            sample_csv_path=req.sample_csv_path,
            image_base_url=req.image_base_url or settings.NEW_SYSTEM_IMAGE_BASE_URL,
        )
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FatalError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"ok": True, **result}


@router.get("/export-csv/{filename}")
async def download_export(filename: str, service: SyncService = Depends(get_service)):
    try:
        path = export_file_path(service.data_dir, filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="Export not found")
    return FileResponse(path, media_type="text/csv", filename=filename)
