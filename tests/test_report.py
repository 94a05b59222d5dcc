import json
import os

import pytest

from catalog_sync.sync.report import LATEST_REPORT, REPORT_FILE_RE, ReportStore, SyncReport


def _report(sku="A1"):
    r = SyncReport(total=1)
    r.mark_created(sku)
    r.add_error("boom", sku="B2")
    return r


def test_save_writes_latest_and_history(tmp_path):
    store = ReportStore(str(tmp_path))

    name = store.save(_report())

    assert REPORT_FILE_RE.match(name)
    assert os.path.exists(tmp_path / LATEST_REPORT)
    assert store.list_reports() == [LATEST_REPORT, name]
    data = json.loads((tmp_path / name).read_text(encoding="utf-8"))
    assert data["createdSkus"] == ["A1"]
    assert data["errors"] == [{"sku": "B2", "message": "boom"}]
    assert data["total"] == 1


def test_retention_prunes_oldest(tmp_path):
    store = ReportStore(str(tmp_path), retention=2)
    names = [store.save(_report(f"S{i}")) for i in range(4)]

    history = store.list_reports()[1:]
    assert len(history) == 2
    assert set(history) <= set(names)


@pytest.mark.parametrize("bad", [
    "../secrets.json",
    "sync-report-latest.json/../x",
    "sync-report-20240101T000000Z.json",
    "other.json",
    "",
])
def test_get_report_rejects_bad_names(tmp_path, bad):
    with pytest.raises(ValueError):
        ReportStore(str(tmp_path)).get_report_by_file(bad)


def test_get_report_missing_is_none(tmp_path):
    store = ReportStore(str(tmp_path))
    assert store.get_report_by_file("sync-report-20240101T000000Z-123e4567-e89b-42d3-a456-426614174000.json") is None


def test_last_report_defaults_to_empty(tmp_path):
    last = ReportStore(str(tmp_path / "missing")).get_last_report()
    assert last["created"] == 0
    assert last["createdSkus"] == []
    assert last["errors"] == []


def test_report_model_accepts_wire_shape():
    wire = _report().to_wire()
    again = SyncReport.model_validate(wire)
    assert again.created_skus == ["A1"]
