#===========================================================================
# catalog_sync/sync/report.py
# Run report: counters + SKU lists accumulated by the engine, persisted as
# JSON (latest + timestamped history) for later inspection.
#===========================================================================
from __future__ import annotations

import json
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger("uvicorn.error")

LATEST_REPORT = "sync-report-latest.json"
_HISTORY_PREFIX = "sync-report-"
_UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
REPORT_FILE_RE = re.compile(
    rf"^(?:sync-report-latest\.json|sync-report-\d{{8}}T\d{{6}}Z-{_UUID}\.json)$"
)


class ReportError(BaseModel):
    sku: Optional[str] = None
    message: str


class SyncReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    created: int = 0
    updated: int = 0
    deleted: int = 0
    total: int = 0
    created_skus: List[str] = Field(default_factory=list)
    updated_skus: List[str] = Field(default_factory=list)
    deleted_skus: List[str] = Field(default_factory=list)
    errors: List[ReportError] = Field(default_factory=list)

    def mark_created(self, sku: str) -> None:
        self.created += 1
        self.created_skus.append(sku)

    def mark_updated(self, sku: str) -> None:
        self.updated += 1
        self.updated_skus.append(sku)

    def mark_deleted(self, sku: str) -> None:
        self.deleted += 1
        self.deleted_skus.append(sku)

    def add_error(self, message: str, sku: Optional[str] = None) -> None:
        self.errors.append(ReportError(sku=sku, message=message))

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ReportStore:
    """Reports directory: one rolling `latest` file plus a bounded history."""

    def __init__(self, directory: str, retention: int = 50):
        self.directory = directory
        self.retention = max(1, int(retention))

    def _path(self, filename: str) -> str:
        return os.path.join(self.directory, filename)

    def _write(self, filename: str, data: Dict[str, Any]) -> None:
        tmp_file = self._path(filename) + ".tmp"
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_file, self._path(filename))

    def _history(self) -> List[str]:
        if not os.path.isdir(self.directory):
            return []
        names = [
            n for n in os.listdir(self.directory)
            if n != LATEST_REPORT and REPORT_FILE_RE.match(n)
        ]
        # timestamp prefix sorts chronologically
        return sorted(names)

    def save(self, report: SyncReport) -> str:
        """Write latest + a timestamped copy; returns the timestamped file name."""
        os.makedirs(self.directory, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        filename = f"{_HISTORY_PREFIX}{stamp}-{uuid.uuid4()}.json"
        data = report.to_wire()
        self._write(LATEST_REPORT, data)
        self._write(filename, data)
        self._prune()
        logger.info("[REPORT] saved %s (created=%s updated=%s deleted=%s errors=%s)",
                    filename, report.created, report.updated, report.deleted, len(report.errors))
        return filename

    def _prune(self) -> None:
        history = self._history()
        for name in history[: max(0, len(history) - self.retention)]:
            try:
                os.remove(self._path(name))
            except OSError as e:
                logger.warning("[REPORT] could not prune %s: %s", name, e)

    def list_reports(self) -> List[str]:
        out: List[str] = []
        if os.path.exists(self._path(LATEST_REPORT)):
            out.append(LATEST_REPORT)
        out.extend(reversed(self._history()))
        return out

    def get_report_by_file(self, filename: str) -> Optional[Dict[str, Any]]:
        if not filename or not REPORT_FILE_RE.match(filename):
            raise ValueError(f"Invalid report file name: {filename!r}")
        path = self._path(filename)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def get_last_report(self) -> Dict[str, Any]:
        data = self.get_report_by_file(LATEST_REPORT)
        if data is None:
            return SyncReport().to_wire()
        return data
