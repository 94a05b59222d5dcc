# catalog_sync/sync/components/util.py
from __future__ import annotations

import html
import os
from urllib.parse import urlparse
from typing import Any, Dict, Iterable, List, TypeVar

T = TypeVar("T")


def normalize_name(name: Any) -> str:
    """Lookup key for category/tag names: unescaped, nbsp-free, trimmed, lower-cased."""
    if not name:
        return ""
    name = html.unescape(str(name))
    name = name.replace("\xa0", " ")
    return name.strip().lower()


def url_basename(url: str) -> str:
    try:
        return os.path.basename(urlparse(url).path)
    except Exception:
        return ""


def compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values so absent fields are omitted from the request body."""
    return {k: v for k, v in payload.items() if v is not None}


def dedupe_by_sku(items: Iterable[T]) -> List[T]:
    """Keep the first occurrence of every SKU, preserving order."""
    seen: set[str] = set()
    out: List[T] = []
    for it in items:
        sku = getattr(it, "sku", None)
        if not sku:
            continue
        key = str(sku)
        if key in seen:
            continue
        seen.add(key)
        out.append(it)
    return out
