import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from catalog_sync.db import create_all
from catalog_sync.settings_store import SettingsRepository
from catalog_sync.sources.models import CanonicalProduct


class FakeWooClient:
    """
    In-memory WooCommerce catalog with the same async surface as WooClient.
    Failures are scripted through the *_errors queues / maps.
    """

    base_url = "https://shop.test"

    def __init__(self, products=None, categories=None, tags=None, media=None):
        self._ids = itertools.count(1000)
        self.products: Dict[int, dict] = {p["id"]: dict(p) for p in products or []}
        self.categories: List[dict] = [dict(c) for c in categories or []]
        self.tags: List[dict] = [dict(t) for t in tags or []]
        self.media: Dict[str, int] = dict(media or {})
        self.calls: List[tuple] = []

        self.create_errors: List[Optional[Exception]] = []
        self.sku_lookups: List[Any] = []
        self.category_errors: Dict[str, Exception] = {}
        self.tag_errors: Dict[str, Exception] = {}
        self.update_errors: Dict[int, Exception] = {}
        self.delete_errors: Dict[int, Exception] = {}
        self.listing_error: Optional[Exception] = None
        self.closed = False

    def calls_of(self, name: str) -> List[tuple]:
        return [c[1:] for c in self.calls if c[0] == name]

    # ---- products ----

    async def list_all_products(self):
        self.calls.append(("list_all_products",))
        if self.listing_error:
            raise self.listing_error
        return [dict(p) for p in self.products.values()]

    async def get_product_by_sku(self, sku):
        self.calls.append(("get_product_by_sku", sku))
        if self.sku_lookups:
            result = self.sku_lookups.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        for p in self.products.values():
            if p.get("sku") == sku:
                return dict(p)
        return None

    async def create_product(self, payload):
        self.calls.append(("create_product", dict(payload)))
        if self.create_errors:
            err = self.create_errors.pop(0)
            if err is not None:
                raise err
        pid = next(self._ids)
        self.products[pid] = {"id": pid, **payload}
        return {"id": pid, **payload}

    async def update_product(self, product_id, payload):
        self.calls.append(("update_product", product_id, dict(payload)))
        if product_id in self.update_errors:
            raise self.update_errors[product_id]
        self.products.setdefault(product_id, {"id": product_id}).update(payload)
        return dict(self.products[product_id])

    async def delete_product(self, product_id):
        self.calls.append(("delete_product", product_id))
        if product_id in self.delete_errors:
            raise self.delete_errors[product_id]
        return self.products.pop(product_id, {"id": product_id})

    # ---- categories / tags ----

    async def list_all_categories(self):
        self.calls.append(("list_all_categories",))
        return [dict(c) for c in self.categories]

    async def create_category(self, name, parent=None):
        self.calls.append(("create_category", name, parent))
        if name in self.category_errors:
            raise self.category_errors[name]
        cat = {"id": next(self._ids), "name": name, "parent": parent or 0}
        self.categories.append(cat)
        return dict(cat)

    async def delete_category(self, category_id):
        self.calls.append(("delete_category", category_id))
        if category_id in self.delete_errors:
            raise self.delete_errors[category_id]
        self.categories = [c for c in self.categories if c["id"] != category_id]
        return {"id": category_id}

    async def list_all_tags(self):
        self.calls.append(("list_all_tags",))
        return [dict(t) for t in self.tags]

    async def create_tag(self, name):
        self.calls.append(("create_tag", name))
        if name in self.tag_errors:
            raise self.tag_errors[name]
        tag = {"id": next(self._ids), "name": name}
        self.tags.append(tag)
        return dict(tag)

    # ---- media ----

    async def find_media_by_filename(self, basename):
        self.calls.append(("find_media_by_filename", basename))
        mid = self.media.get(basename)
        return {"id": mid} if mid else None

    async def aclose(self):
        self.closed = True


class Recorder:
    """Stand-in for EventBuffer: keeps (type, fields) tuples."""

    def __init__(self):
        self.events: List[tuple] = []

    def __call__(self, type_, **fields):
        self.events.append((type_, fields))

    def types(self) -> List[str]:
        return [t for t, _ in self.events]


class SleepRecorder:
    def __init__(self):
        self.waits: List[float] = []

    async def __call__(self, seconds):
        self.waits.append(seconds)


def make_product(sku="A1", name="Widget", **kw) -> CanonicalProduct:
    return CanonicalProduct(sku=sku, name=name, **kw)


def make_settings_repo(path) -> SettingsRepository:
    """SettingsRepository on a fresh SQLite file; NullPool so every event loop gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    asyncio.run(create_all(engine))
    return SettingsRepository(async_sessionmaker(engine, expire_on_commit=False))


@pytest.fixture
def fake_client():
    return FakeWooClient()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def sleeper():
    return SleepRecorder()
