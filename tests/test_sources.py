import json
import os

import httpx
import pytest

from catalog_sync.errors import FatalError
from catalog_sync.sources.manual import ManualProductInput, build_manual_product, load_manual_batch
from catalog_sync.sources.models import CanonicalProduct, sanitize_tag_names, validate_products
from catalog_sync.sources.new_system import (
    NewSystemProduct,
    load_new_system_batch,
    map_new_system_record,
    resolve_upload_path,
    save_raw_payload,
    save_upload,
    uploads_dir,
    validate_raw,
)
from catalog_sync.sources.xml_feed import load_xml_batch, parse_xml_string

from conftest import Recorder

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<products>
  <product>
    <SKU>X1</SKU>
    <Title>Pump</Title>
    <Price>1.234,50</Price>
    <Stock>7</Stock>
    <images>
      <image>https://cdn.test/p1.jpg</image>
      <image src="https://cdn.test/p2.jpg"/>
    </images>
    <Category>Pumps</Category>
    <Category>Hydraulic</Category>
    <tags><tag>Bosch</tag></tags>
    <active>0</active>
  </product>
  <product code="X2"><name>Valve</name></product>
  <product><name>No sku</name></product>
</products>
"""

RECORD = {
    "KOD": 123,
    "OEM": "OE-9",
    "STOK_ADI": "Filter",
    "FIYAT": "1.250,00",
    "MARKA": "Bosch",
    "MODEL": "X5",
    "ANA_GRUP": "Parts",
    "ALT_GRUP": "Oil",
    "BAKIYE": "12 adet",
    "GORSELLER": ["/img/a.jpg", "https://cdn.test/b.jpg"],
}


# ---- canonical model ----

def test_tag_names_are_sanitized():
    names = ["  Bosch ", "bosch", "", "x" * 41, "one two three four five six seven", "A", "B", "C", "D", "E"]
    assert sanitize_tag_names(names) == ["Bosch", "A", "B", "C", "D"]


def test_validate_products_drops_invalid():
    valid, invalid = validate_products([
        {"sku": 5, "name": "Five"},
        {"sku": "", "name": "Blank"},
        {"sku": "R1", "name": "Relative", "images": [{"src": "/x.jpg"}]},
    ])
    assert [p.sku for p in valid] == ["5"]
    assert invalid == 2


# ---- XML ----

def test_xml_aliases_and_counts():
    products, raw_count, invalid = parse_xml_string(FEED)
    assert (raw_count, invalid) == (3, 1)

    pump, valve = products
    assert pump.sku == "X1"
    assert pump.name == "Pump"
    assert pump.regular_price == "1234.50"
    assert pump.stock_quantity == 7
    assert pump.manage_stock is True
    assert pump.status == "draft"
    assert [i.src for i in pump.images] == ["https://cdn.test/p1.jpg", "https://cdn.test/p2.jpg"]
    assert pump.category_names == ["Pumps", "Hydraulic"]
    assert pump.tag_names == ["Bosch"]

    assert valve.sku == "X2"
    assert valve.manage_stock is False
    assert valve.status is None


def test_xml_batch_from_file(tmp_path):
    path = tmp_path / "feed.xml"
    path.write_text(FEED, encoding="utf-8")
    batch = load_xml_batch(str(path))
    assert [p.sku for p in batch.products] == ["X1", "X2"]
    assert batch.invalid_count == 1


def test_xml_missing_file_is_fatal(tmp_path):
    with pytest.raises(FatalError):
        load_xml_batch(str(tmp_path / "nope.xml"))
    with pytest.raises(FatalError):
        load_xml_batch("")


def test_xml_parse_error_is_fatal():
    with pytest.raises(FatalError):
        parse_xml_string("<products><product>")


# ---- new system ----

def test_new_system_record_mapping():
    mapped = map_new_system_record(NewSystemProduct.model_validate(RECORD), "https://img.test/")
    product = CanonicalProduct.model_validate(mapped)

    assert product.sku == "123"
    assert product.name == "OE-9 - Filter"
    assert product.description == "OE-9 - Bosch - X5"
    assert product.regular_price == "1250.00"
    assert product.stock_quantity == 12
    assert product.manage_stock is True
    assert product.status == "publish"
    assert [i.src for i in product.images] == ["https://img.test/img/a.jpg", "https://cdn.test/b.jpg"]
    assert product.category_names == ["Bosch", "X5", "Oil"]
    assert product.tag_names == ["OE-9", "Bosch", "X5"]


def test_new_system_without_oem_or_image_base():
    rec = {**RECORD, "OEM": None}
    mapped = map_new_system_record(NewSystemProduct.model_validate(rec))
    assert mapped["name"] == "Filter"
    assert mapped["description"] == "Bosch - X5"
    assert mapped["images"] == [{"src": "https://cdn.test/b.jpg"}]


def test_validate_raw_counts_invalid_records():
    valid, invalid = validate_raw([RECORD, {"KOD": "", "STOK_ADI": "x"}, {"KOD": "1"}, "junk"])
    assert [p.KOD for p in valid] == ["123"]
    assert invalid == 3


@pytest.mark.asyncio
async def test_load_from_api_saves_payload_and_replays(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [RECORD, {"KOD": "2"}]})

    emit = Recorder()
    batch = await load_new_system_batch(
        emit,
        data_dir=str(tmp_path),
        api_url="https://erp.test/products",
        transport=httpx.MockTransport(handler),
    )

    assert [p.sku for p in batch.products] == ["123"]
    assert (batch.raw_count, batch.invalid_count) == (2, 1)
    assert batch.saved_file.startswith("uploads/new-system/new-system-")
    assert emit.events[0] == ("saved_file", {"file": batch.saved_file, "count": 2})
    assert emit.events[1][1]["message"] == "File records: 2, valid: 1, invalid: 1"

    with open(os.path.join(tmp_path, batch.saved_file), encoding="utf-8") as f:
        assert json.load(f)[0]["KOD"] == 123

    replay_emit = Recorder()
    replay = await load_new_system_batch(replay_emit, data_dir=str(tmp_path), file_path=batch.saved_file)
    assert [p.sku for p in replay.products] == ["123"]
    assert replay.saved_file is None
    assert replay_emit.events[0][1]["message"].startswith("Syncing from file")


@pytest.mark.asyncio
async def test_api_failure_is_fatal(tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(FatalError):
        await load_new_system_batch(
            Recorder(),
            data_dir=str(tmp_path),
            api_url="https://erp.test/products",
            transport=httpx.MockTransport(handler),
        )
    with pytest.raises(FatalError):
        await load_new_system_batch(Recorder(), data_dir=str(tmp_path))


def test_upload_replaces_older_payloads(tmp_path):
    first = save_raw_payload(str(tmp_path), [RECORD])
    uploaded = save_upload(str(tmp_path), "my feed.json", b"[]")

    folder = uploads_dir(str(tmp_path))
    assert os.listdir(folder) == [uploaded.rsplit("/", 1)[1]]
    assert uploaded.endswith("-my_feed.json")
    assert not os.path.exists(os.path.join(tmp_path, first))


def test_upload_path_stays_inside_uploads(tmp_path):
    inside = resolve_upload_path(str(tmp_path), "public/uploads/new-system/a.json")
    assert inside == os.path.realpath(os.path.join(tmp_path, "uploads", "new-system", "a.json"))

    for bad in ("../../etc/passwd", "uploads/../secrets.json", "reports/sync-report-latest.json"):
        with pytest.raises(FatalError):
            resolve_upload_path(str(tmp_path), bad)


# ---- manual ----

@pytest.mark.asyncio
async def test_manual_product():
    data = ManualProductInput.model_validate({"sku": " M1 ", "regularPrice": "10,50", "stockQuantity": 3})
    product = build_manual_product(data)
    assert (product.sku, product.name) == ("M1", "M1")
    assert product.regular_price == "10.50"
    assert product.manage_stock is True
    assert product.status == "publish"

    emit = Recorder()
    batch = await load_manual_batch(emit, data)
    assert batch.products == [product]
    assert emit.types() == ["info"]
