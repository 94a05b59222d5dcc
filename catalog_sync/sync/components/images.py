# catalog_sync/sync/components/images.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from catalog_sync.errors import RemoteError
from catalog_sync.sync.components.util import url_basename
from catalog_sync.sync.events import Emit

logger = logging.getLogger(__name__)


_IMAGE_EXT_RE = re.compile(r"\.(jpe?g|png|webp|gif|bmp|svg)$", re.IGNORECASE)


def _src_of(image: Any) -> str:
    if isinstance(image, dict):
        return str(image.get("src") or "").strip()
    if isinstance(image, str):
        return image.strip()
    return str(getattr(image, "src", "") or "").strip()


def is_usable_image_url(src: str) -> bool:
    try:
        parsed = urlparse(src)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    path = parsed.path or ""
    if not path or path == "/" or path.endswith("/"):
        return False
    base = path.rsplit("/", 1)[-1]
    if len(base) <= 1:
        return False
    return bool(_IMAGE_EXT_RE.search(base)) or "." in base


def sanitize_images(images: Optional[Iterable[Any]]) -> Optional[List[Dict[str, str]]]:
    """
    Keep http(s) image URLs with a real file name; returns [{"src": ...}] or None.
    Accepts dicts, ImageRef models or bare URL strings.
    """
    out: List[Dict[str, str]] = []
    for image in images or []:
        src = _src_of(image)
        if src and is_usable_image_url(src):
            out.append({"src": src})
    return out or None


class ImageResolver:
    """
    Turns candidate images into WooCommerce image references.
    In prefer_existing_by_filename mode a media library hit becomes {"id"},
    everything else is sent as {"src"} for Woo to sideload.
    """

    def __init__(self, client, emit: Emit):
        self.client = client
        self._emit = emit
        self._by_basename: Dict[str, int] = {}

    async def resolve(self, images: Optional[Iterable[Any]], mode: str) -> Optional[List[Dict[str, Any]]]:
        if mode == "none":
            return None
        clean = sanitize_images(images)
        if not clean:
            return None
        if mode == "upload":
            return clean

        out: List[Dict[str, Any]] = []
        for image in clean:
            src = image["src"]
            basename = url_basename(src)
            key = basename.lower()
            cached = self._by_basename.get(key)
            if cached is not None:
                out.append({"id": cached})
                self._emit("found_existing_media_cached", basename=basename, id=cached)
                continue
            try:
                media = await self.client.find_media_by_filename(basename)
            except RemoteError as exc:
                logger.warning("Media lookup failed for %s: %s", basename, exc)
                media = None
            media_id = (media or {}).get("id")
            if media_id:
                self._by_basename[key] = int(media_id)
                out.append({"id": int(media_id)})
                self._emit("found_existing_media", basename=basename, id=int(media_id))
            else:
                out.append({"src": src})
                self._emit("fallback_upload_media", basename=basename, src=src)
        return out or None
