# catalog_sync/sync/components/hierarchy.py
# Map category chains / tag names to WooCommerce term ids, creating missing terms.
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from catalog_sync.errors import RemoteError
from catalog_sync.sync.components.util import normalize_name
from catalog_sync.sync.events import Emit

logger = logging.getLogger(__name__)


def _term_id(created: Optional[dict]) -> Optional[int]:
    try:
        return int((created or {}).get("id"))
    except (TypeError, ValueError):
        return None


class CategoryResolver:
    """
    Resolves parent→child name chains (e.g. Brand > Model > Subgroup).
    Cache key is (parent_id, normalized name); parent 0 is the root.
    """

    def __init__(self, client, emit: Emit):
        self.client = client
        self._emit = emit
        self._cache: Dict[Tuple[int, str], int] = {}

    def seed(self, categories: Iterable[dict]) -> None:
        for cat in categories or []:
            name = cat.get("name")
            cat_id = _term_id(cat)
            if not name or cat_id is None:
                continue
            self._cache[(int(cat.get("parent") or 0), normalize_name(name))] = cat_id

    def __len__(self) -> int:
        return len(self._cache)

    async def ensure_chain(self, names: Iterable[Optional[str]]) -> List[int]:
        ids: List[int] = []
        parent_id = 0
        for raw in names or []:
            name = (raw or "").strip()
            if not name:
                continue
            key = (parent_id, normalize_name(name))
            cat_id = self._cache.get(key)
            if cat_id is None:
                cat_id = await self._create(name, parent_id)
                if cat_id is None:
                    # link dropped: the product is filed one level shallower
                    continue
                self._cache[key] = cat_id
            ids.append(cat_id)
            parent_id = cat_id
        return ids

    async def _create(self, name: str, parent_id: int) -> Optional[int]:
        try:
            created = await self.client.create_category(name, parent=parent_id or None)
        except RemoteError as exc:
            if exc.existing_term_id:
                logger.info("Category %r already exists under %s as %s", name, parent_id, exc.existing_term_id)
                return exc.existing_term_id
            logger.warning("Category create failed for %r (parent %s): %s", name, parent_id, exc)
            self._emit("error", error=f"Category could not be created: {name} - {exc}")
            return None
        cat_id = _term_id(created)
        if cat_id is None:
            self._emit("error", error=f"Category could not be created: {name} - no id returned")
            return None
        self._emit("category_created", name=name, parent=parent_id, id=cat_id)
        return cat_id


class TagResolver:
    """Flat counterpart of CategoryResolver keyed by normalized name."""

    def __init__(self, client, emit: Emit):
        self.client = client
        self._emit = emit
        self._cache: Dict[str, int] = {}

    def seed(self, tags: Iterable[dict]) -> None:
        for tag in tags or []:
            tag_id = _term_id(tag)
            if tag.get("name") and tag_id is not None:
                self._cache[normalize_name(tag["name"])] = tag_id

    def __len__(self) -> int:
        return len(self._cache)

    async def ensure_tags(self, names: Iterable[Optional[str]]) -> List[int]:
        ids: List[int] = []
        for raw in names or []:
            name = (raw or "").strip()
            if not name:
                continue
            key = normalize_name(name)
            tag_id = self._cache.get(key)
            if tag_id is None:
                try:
                    created = await self.client.create_tag(name)
                except RemoteError as exc:
                    if exc.existing_term_id:
                        tag_id = exc.existing_term_id
                    else:
                        logger.warning("Tag create failed for %r: %s", name, exc)
                        self._emit("error", error=f"Tag could not be created: {name} - {exc}")
                        continue
                else:
                    tag_id = _term_id(created)
                    if tag_id is None:
                        continue
                    self._emit("tag_created", name=name, id=tag_id)
                self._cache[key] = tag_id
            if tag_id not in ids:
                ids.append(tag_id)
        return ids
