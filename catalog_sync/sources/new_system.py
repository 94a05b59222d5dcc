#==========================================================================================
# catalog_sync/sources/new_system.py
# "New system" JSON API adapter.
# Records look like {KOD, OEM, STOK_ADI, FIYAT, MARKA, MODEL, ANA_GRUP, ALT_GRUP, BAKIYE, GORSELLER}.
# A fetched payload is saved under DATA_DIR/uploads/new-system so a later run can replay it.
#==========================================================================================
from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from catalog_sync.errors import FatalError
from catalog_sync.sources.models import SourceBatch, is_url, validate_products
from catalog_sync.sync.components.price import to_price_string
from catalog_sync.sync.events import Emit

logger = logging.getLogger("uvicorn.error")

UPLOADS_SUBDIR = os.path.join("uploads", "new-system")
_SAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9_.-]")
_STOCK_RE = re.compile(r"[^0-9\-]")


class NewSystemProduct(BaseModel):
    model_config = ConfigDict(extra="ignore")

    KOD: str = Field(min_length=1)
    OEM: Optional[str] = None
    STOK_ADI: str = Field(min_length=1)
    FIYAT: Union[float, int, str, None] = None
    MARKA: Optional[str] = None
    MODEL: Optional[str] = None
    ANA_GRUP: Optional[str] = None
    ALT_GRUP: Optional[str] = None
    BAKIYE: Union[float, int, str, None] = None
    GORSELLER: List[str] = Field(default_factory=list)

    @field_validator("KOD", "OEM", "MARKA", "MODEL", "ANA_GRUP", "ALT_GRUP", mode="before")
    @classmethod
    def _codes_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("GORSELLER", mode="before")
    @classmethod
    def _null_images(cls, v: Any) -> Any:
        return v or []


def validate_raw(raw: Iterable[Any]) -> Tuple[List[NewSystemProduct], int]:
    valid: List[NewSystemProduct] = []
    invalid = 0
    for rec in raw or []:
        try:
            valid.append(NewSystemProduct.model_validate(rec))
        except ValidationError:
            invalid += 1
    return valid, invalid


def unwrap_records(data: Any) -> List[Any]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return data.get("items") or data.get("products") or []
    return []


async def fetch_new_system_products(
    api_url: str,
    *,
    timeout: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> List[Any]:
    """Download the raw record list (unvalidated)."""
    if not api_url:
        raise FatalError("New system API URL is required")
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.get(api_url)
    except httpx.HTTPError as e:
        raise FatalError(f"New system API could not be downloaded: {e}") from e
    if resp.status_code >= 400:
        raise FatalError(f"New system API could not be downloaded: {resp.status_code} {resp.reason_phrase}")
    try:
        return unwrap_records(resp.json())
    except ValueError as e:
        raise FatalError("New system API did not return JSON") from e


def _to_stock(v: Any) -> Optional[int]:
    if v is None:
        return None
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return int(v)
    s = _STOCK_RE.sub("", str(v))
    try:
        return int(s) if s not in {"", "-"} else None
    except ValueError:
        return None


def _image_url(src: str, base: str) -> Optional[str]:
    src = (src or "").strip()
    if not src:
        return None
    if is_url(src):
        return src
    if not base:
        # relative path and nowhere to anchor it
        return None
    return f"{base}{src if src.startswith('/') else '/' + src}"


def map_new_system_record(p: NewSystemProduct, image_base_url: str = "") -> Dict[str, Any]:
    base = (image_base_url or "").rstrip("/")
    oem = (p.OEM or "").strip()
    name = f"{oem} - {p.STOK_ADI}" if oem else p.STOK_ADI
    description = " - ".join(str(x).strip() for x in (p.OEM, p.MARKA, p.MODEL) if x and str(x).strip())
    stock = _to_stock(p.BAKIYE)
    images = [u for u in (_image_url(s, base) for s in p.GORSELLER) if u]
    return {
        "sku": p.KOD,
        "name": name,
        "description": description or None,
        "regular_price": to_price_string(p.FIYAT),
        "stock_quantity": stock,
        "manage_stock": stock is not None,
        "status": "publish",
        "images": [{"src": u} for u in images],
        "categories": [{"name": c} for c in (p.MARKA, p.MODEL, p.ALT_GRUP) if c],
        "tags": [{"name": t} for t in (p.OEM, p.MARKA, p.MODEL) if t],
    }


def map_new_system_to_products(raw: Iterable[NewSystemProduct], image_base_url: str = ""):
    return validate_products((map_new_system_record(p, image_base_url) for p in raw), source="new-system")[0]


# ---- uploads folder ----

def uploads_dir(data_dir: str) -> str:
    path = os.path.join(data_dir, UPLOADS_SUBDIR)
    os.makedirs(path, exist_ok=True)
    return path


def _stamp() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def _remove_other_json(folder: str, keep: str) -> None:
    for entry in os.listdir(folder):
        if entry.endswith(".json") and entry != keep and os.path.isfile(os.path.join(folder, entry)):
            try:
                os.remove(os.path.join(folder, entry))
            except OSError as e:
                logger.warning("[NEW-SYSTEM] could not remove old file %s: %s", entry, e)


def _relative(filename: str) -> str:
    return "/".join(["uploads", "new-system", filename])


def save_raw_payload(data_dir: str, raw: List[Any]) -> str:
    """Persist a fetched payload; returns its path relative to DATA_DIR."""
    folder = uploads_dir(data_dir)
    filename = f"new-system-{_stamp()}.json"
    with open(os.path.join(folder, filename), "w", encoding="utf-8") as f:
        json.dump(raw, f, indent=2, ensure_ascii=False)
    _remove_other_json(folder, filename)
    return _relative(filename)


def save_upload(data_dir: str, original_name: Optional[str], content: bytes) -> str:
    folder = uploads_dir(data_dir)
    safe_name = _SAFE_NAME_RE.sub("_", original_name) if original_name else "upload.json"
    filename = f"upload-{_stamp()}-{safe_name}"
    with open(os.path.join(folder, filename), "wb") as f:
        f.write(content)
    _remove_other_json(folder, filename)
    logger.info("[NEW-SYSTEM] upload stored as %s", filename)
    return _relative(filename)


def resolve_upload_path(data_dir: str, file_path: str) -> str:
    """Absolute path of a previously saved file; anything outside the uploads root is rejected."""
    rel = (file_path or "").replace("\\", "/").lstrip("/")
    if rel.startswith("public/"):
        rel = rel[len("public/"):]
    root = os.path.realpath(os.path.join(data_dir, "uploads"))
    target = os.path.realpath(os.path.join(data_dir, rel))
    if os.path.commonpath([root, target]) != root:
        raise FatalError(f"File path is outside the uploads folder: {file_path}")
    return target


def read_upload(data_dir: str, file_path: str) -> List[Any]:
    target = resolve_upload_path(data_dir, file_path)
    if not os.path.isfile(target):
        raise FatalError(f"File not found: {file_path}")
    with open(target, "r", encoding="utf-8") as f:
        try:
            return unwrap_records(json.load(f))
        except ValueError as e:
            raise FatalError(f"File is not valid JSON: {file_path}") from e


async def load_new_system_batch(
    emit: Emit,
    *,
    data_dir: str,
    api_url: str = "",
    image_base_url: str = "",
    file_path: str = "",
    transport: httpx.AsyncBaseTransport | None = None,
) -> SourceBatch:
    saved = None
    if file_path:
        raw = read_upload(data_dir, file_path)
        emit("info", message=f"Syncing from file: {file_path}")
    else:
        raw = await fetch_new_system_products(api_url, transport=transport)
        saved = save_raw_payload(data_dir, raw)
        emit("saved_file", file=saved, count=len(raw))

    valid_raw, invalid_raw = validate_raw(raw)
    emit("info", message=f"File records: {len(raw)}, valid: {len(valid_raw)}, invalid: {invalid_raw}")
    products = map_new_system_to_products(valid_raw, image_base_url)
    return SourceBatch(
        products=products,
        saved_file=saved,
        raw_count=len(raw),
        invalid_count=invalid_raw + (len(valid_raw) - len(products)),
    )
