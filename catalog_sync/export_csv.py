# catalog_sync/export_csv.py
# --------------------------------------------------------------------------------------
# New-system records -> WooCommerce product import CSV.
# Column set and order come from a sample export of the shop (its header line), so the
# file can be fed straight into the WooCommerce importer of that store's locale.
# --------------------------------------------------------------------------------------
from __future__ import annotations

import json
import logging
import os
import re
import time
from typing import Dict, Iterable, List, Optional

import pandas as pd

from catalog_sync.errors import FatalError
from catalog_sync.sources.models import CanonicalProduct
from catalog_sync.sources.new_system import (
    map_new_system_to_products,
    resolve_upload_path,
    unwrap_records,
    uploads_dir,
    validate_raw,
)

logger = logging.getLogger("uvicorn.error")

EXPORT_FILE_RE = re.compile(r"^export-csv-\d+\.csv$")

# Turkish WooCommerce importer headers (the shop's admin locale)
DEFAULT_COLUMNS = [
    "Kimlik", "Tür", "Stok kodu (SKU)", "İsim", "Yayımlanmış", "Öne çıkan?",
    "Katalogda görünürlük", "Kısa açıklama", "Açıklama",
    "İndirimli fiyatın başladığı tarih", "İndirimli fiyatın bittiği tarih",
    "Vergi durumu", "Vergi sınıfı", "Stokta?", "Stok", "Düşük stok miktarı",
    "Yok satmaya izin?", "Ayrı ayrı mı satılıyor?", "Ağırlık (kg)", "Uzunluk (cm)",
    "Genişlik (cm)", "Yükseklik (cm)", "Müşteri değerlendirmelerine izin verilsin mi?",
    "Satın alma notu", "İndirimli satış fiyatı", "Normal fiyat", "Kategoriler",
    "Etiketler", "Gönderim sınıfı", "Görseller", "İndirme sınırı",
    "İndirme sona erme günü", "Ebeveyn", "Gruplanmış ürünler", "Yukarı satışlar",
    "Çapraz satışlar", "Harici URL", "Düğme metni", "Konum",
]


def product_row(p: CanonicalProduct) -> Dict[str, str]:
    """Importer columns for one product; columns not listed here stay empty."""
    if p.manage_stock:
        in_stock = "1" if (p.stock_quantity or 0) > 0 else "0"
    else:
        in_stock = ""  # empty: WooCommerce default
    return {
        "Tür": "simple",
        "Stok kodu (SKU)": p.sku,
        "İsim": p.name,
        "Yayımlanmış": "1" if p.status == "publish" else "0",
        "Öne çıkan?": "0",
        "Katalogda görünürlük": "visible",
        "Kısa açıklama": p.short_description or "",
        "Açıklama": p.description or "",
        "Stokta?": in_stock,
        "Stok": str(p.stock_quantity) if p.stock_quantity is not None else "",
        "Yok satmaya izin?": "0",
        "Ayrı ayrı mı satılıyor?": "0",
        "Müşteri değerlendirmelerine izin verilsin mi?": "1",
        "İndirimli satış fiyatı": p.sale_price or "",
        "Normal fiyat": p.regular_price or "",
        "Kategoriler": " > ".join(p.category_names),
        "Etiketler": ", ".join(p.tag_names),
        "Görseller": ", ".join(i.src for i in p.images),
    }


def read_csv_header(path: str) -> List[str]:
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Sample CSV not found: {path}")
    df = pd.read_csv(path, nrows=0, encoding="utf-8-sig", dtype=str)
    return [str(c).strip() for c in df.columns]


def build_frame(products: Iterable[CanonicalProduct], columns: List[str]) -> pd.DataFrame:
    rows = []
    for p in products:
        values = product_row(p)
        rows.append([values.get(col, "") for col in columns])
    return pd.DataFrame(rows, columns=columns, dtype=str)


def export_new_system_csv(
    data_dir: str,
    json_path: str,
    sample_csv_path: Optional[str] = None,
    image_base_url: str = "",
) -> Dict[str, object]:
    """
    Map a saved/uploaded new-system JSON file and write it as an importer CSV under the
    uploads folder. Returns {"file", "count"}; the file path is relative to data_dir.
    """
    source = resolve_upload_path(data_dir, json_path)
    if not os.path.isfile(source):
        raise FileNotFoundError(f"JSON source not found: {json_path}")
    columns = DEFAULT_COLUMNS
    if sample_csv_path:
        columns = read_csv_header(resolve_upload_path(data_dir, sample_csv_path))

    with open(source, "r", encoding="utf-8") as f:
        try:
            raw = unwrap_records(json.load(f))
        except ValueError as e:
            raise FatalError(f"JSON could not be parsed: {json_path}: {e}") from e

    valid, invalid = validate_raw(raw)
    products = map_new_system_to_products(valid, image_base_url)

    filename = f"export-csv-{int(time.time() * 1000)}.csv"
    out_path = os.path.join(uploads_dir(data_dir), filename)
    build_frame(products, columns).to_csv(out_path, index=False, encoding="utf-8", lineterminator="\n")
    logger.info("[EXPORT] %s: %d products (%d invalid records) -> %s", json_path, len(products), invalid, filename)
    return {"file": "/".join(["uploads", "new-system", filename]), "count": len(products)}


def export_file_path(data_dir: str, filename: str) -> str:
    if not EXPORT_FILE_RE.match(filename or ""):
        raise ValueError(f"Invalid export file name: {filename}")
    return os.path.join(uploads_dir(data_dir), filename)
