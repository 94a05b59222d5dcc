#==========================================================================================
# catalog_sync/sync/engine.py
# Reconciliation engine: diffs an incoming product set against the WooCommerce catalog
# by SKU and creates / updates / skips / deletes, one product at a time.
#
# The engine is an async generator of SyncEvent. Producers inside the run (resolvers,
# retry helpers) push into an EventBuffer which is drained after every step, so the
# consumer sees events in strict processing order. Closing the iterator stops the run
# at the next suspension point.
#==========================================================================================
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from catalog_sync.errors import ConflictError, RemoteError
from catalog_sync.sources.models import CanonicalProduct, SourceBatch
from catalog_sync.sync.components.hierarchy import CategoryResolver, TagResolver
from catalog_sync.sync.components.images import ImageResolver
from catalog_sync.sync.components.price import apply_margin_to_prices
from catalog_sync.sync.components.util import compact, dedupe_by_sku
from catalog_sync.sync.events import Emit, EventBuffer, SyncEvent
from catalog_sync.sync.options import SyncOptions, migrate_options
from catalog_sync.sync.report import ReportStore, SyncReport

logger = logging.getLogger("uvicorn.error")

Loader = Callable[[Emit], Awaitable[SourceBatch]]
Source = Union[Loader, SourceBatch, Iterable[CanonicalProduct]]

CONFLICT_RETRY_DELAY = 0.5
DEFERRED_BASE_WAIT_MS = 2000
DEFERRED_MAX_ATTEMPTS = 4


@dataclass
class DeferredCreate:
    sku: str
    name: str
    payload: Dict[str, Any]
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    stock_quantity: Optional[int] = None
    manage_stock: Optional[bool] = None


@dataclass
class _Prices:
    regular: Optional[str]
    sale: Optional[str]


@dataclass
class _RunState:
    report: SyncReport = field(default_factory=SyncReport)
    existing: List[dict] = field(default_factory=list)
    existing_by_sku: Dict[str, dict] = field(default_factory=dict)
    deferred: List[DeferredCreate] = field(default_factory=list)
    input_skus: set = field(default_factory=set)
    source_file: Optional[str] = None


def _stock_fields(manage_stock: Optional[bool], stock_quantity: Optional[int]) -> Dict[str, Any]:
    return compact({"manage_stock": manage_stock, "stock_quantity": stock_quantity})


def _stock_price_payload(prices: _Prices, manage_stock: Optional[bool], stock_quantity: Optional[int]) -> Dict[str, Any]:
    return compact({
        "regular_price": prices.regular,
        "sale_price": prices.sale,
        **_stock_fields(manage_stock, stock_quantity),
    })


def _without_images(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if k != "images"}


class SyncEngine:
    def __init__(
        self,
        client,
        options: SyncOptions | Dict[str, Any] | None = None,
        *,
        report_store: ReportStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        conflict_retry_delay: float = CONFLICT_RETRY_DELAY,
        deferred_base_wait_ms: int = DEFERRED_BASE_WAIT_MS,
        deferred_max_attempts: int = DEFERRED_MAX_ATTEMPTS,
        listener: Callable[[SyncEvent], None] | None = None,
    ):
        self.client = client
        self.options = options if isinstance(options, SyncOptions) else migrate_options(options)
        self.report_store = report_store
        self._sleep = sleep
        self._clock = clock
        self.conflict_retry_delay = conflict_retry_delay
        self.deferred_base_wait_ms = deferred_base_wait_ms
        self.deferred_max_attempts = deferred_max_attempts
        self._listener = listener
        self._reset()

    @property
    def report(self) -> SyncReport:
        return self.state.report

    def _reset(self) -> None:
        # caches are per run; nothing survives into the next one
        self.emit = EventBuffer(self._listener)
        self.state = _RunState()
        self.categories = CategoryResolver(self.client, self.emit)
        self.tags = TagResolver(self.client, self.emit)
        self.images = ImageResolver(self.client, self.emit)

    # ------------------------------------------------------------------
    # run
    # ------------------------------------------------------------------

    async def run(self, source: Source) -> AsyncIterator[SyncEvent]:
        self._reset()
        emit = self.emit
        opts = self.options
        emit("start", at=datetime.now(timezone.utc).isoformat())

        try:
            to_import = await self._prepare(source)
            for ev in emit.drain():
                yield ev
            await self._load_snapshot()
        except Exception as e:
            logger.exception("[SYNC] setup failed")
            emit("fatal", message=str(e) or e.__class__.__name__)
            for ev in emit.drain():
                yield ev
            return
        for ev in emit.drain():
            yield ev

        report = self.state.report
        report.total = len(to_import)
        started = self._clock()
        processed = 0

        for product in to_import:
            if opts.per_item_delay_ms > 0:
                await self._sleep(opts.per_item_delay_ms / 1000)
            try:
                await self._process(product)
            except ConflictError as e:
                emit("skip_conflict", sku=product.sku, name=product.name, error=str(e))
                report.add_error(str(e), sku=product.sku)
            except Exception as e:
                logger.warning("[SYNC] %s failed: %s", product.sku, e)
                emit("error", sku=product.sku, name=product.name, error=str(e))
                report.add_error(str(e), sku=product.sku)

            processed += 1
            elapsed_ms = int((self._clock() - started) * 1000)
            speed = processed / (elapsed_ms / 1000) if elapsed_ms > 0 else 0
            emit("progress", processed=processed, total=len(to_import), elapsedMs=elapsed_ms, speed=speed)
            for ev in emit.drain():
                yield ev

        for item in self.state.deferred:
            await self._retry_deferred(item)
            for ev in emit.drain():
                yield ev

        if opts.delete_missing:
            await self._delete_missing()
            for ev in emit.drain():
                yield ev

        saved = None
        if self.report_store is not None:
            try:
                saved = self.report_store.save(report)
            except OSError as e:
                logger.error("[SYNC] report could not be saved: %s", e)
        logger.info("[SYNC] done: created=%s updated=%s deleted=%s errors=%s",
                    report.created, report.updated, report.deleted, len(report.errors))
        # file: the saved source payload (if any); report: the persisted run report
        emit("done", created=report.created, updated=report.updated, deleted=report.deleted,
             total=report.total, file=self.state.source_file, report=saved)
        for ev in emit.drain():
            yield ev

    async def run_to_completion(self, source: Source) -> SyncReport:
        """Consume the event stream; raises RuntimeError on a fatal event."""
        async for ev in self.run(source):
            if ev.type == "fatal":
                raise RuntimeError(ev.get("message"))
        return self.state.report

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    async def _prepare(self, source: Source) -> List[CanonicalProduct]:
        emit = self.emit
        opts = self.options
        if isinstance(source, SourceBatch):
            batch = source
        elif callable(source):
            batch = await source(emit)
        else:
            batch = SourceBatch(products=list(source))

        self.state.source_file = batch.saved_file
        products = list(batch.products)
        if opts.process_direction == "desc":
            products.reverse()
        emit("order_applied", direction=opts.process_direction)

        products = dedupe_by_sku(products)
        self.state.input_skus = {p.sku for p in products}

        if opts.limit:
            products = products[: opts.limit]
            emit("limit_applied", limit=opts.limit, effective=len(products))

        emit("info", message=f"Products to process: {len(products)}")
        return products

    async def _load_snapshot(self) -> None:
        st = self.state
        st.existing = await self.client.list_all_products()
        st.existing_by_sku = {str(p["sku"]): p for p in st.existing if p.get("sku")}
        self.categories.seed(await self.client.list_all_categories())
        self.tags.seed(await self.client.list_all_tags())
        logger.info("[SYNC] snapshot: %d products, %d categories, %d tags",
                    len(st.existing), len(self.categories), len(self.tags))

    # ------------------------------------------------------------------
    # per product
    # ------------------------------------------------------------------

    def _prices(self, product: CanonicalProduct) -> _Prices:
        opts = self.options
        regular, sale = apply_margin_to_prices(
            product.regular_price,
            product.sale_price,
            opts.profit_margin_percent,
            opts.apply_margin_on,
            opts.round_to_integer,
        )
        return _Prices(regular, sale)

    async def _process(self, product: CanonicalProduct) -> None:
        prices = self._prices(product)
        current = self.state.existing_by_sku.get(product.sku)
        if current and current.get("id"):
            await self._update(product, current, prices)
        else:
            await self._create(product, prices)

    async def _update(self, product: CanonicalProduct, current: dict, prices: _Prices) -> None:
        opts = self.options
        emit = self.emit
        pid = current["id"]
        if not opts.do_update_existing:
            emit("skip_update", sku=product.sku, name=product.name)
            return

        if opts.update_stock_only:
            payload = _stock_fields(product.manage_stock, product.stock_quantity)
            event = "updated_stock"
        elif opts.update_stock_and_price_only:
            payload = _stock_price_payload(prices, product.manage_stock, product.stock_quantity)
            event = "updated_stock_price"
        else:
            payload = await self._full_update_payload(product, prices)
            event = "updated_product"

        if not payload:
            emit("skip_update_no_fields", sku=product.sku, id=pid, name=product.name)
            return
        await self.client.update_product(pid, payload)
        self.state.report.mark_updated(product.sku)
        emit(event, sku=product.sku, id=pid, name=product.name)

    async def _full_update_payload(self, product: CanonicalProduct, prices: _Prices) -> Dict[str, Any]:
        opts = self.options
        cat_ids = await self.categories.ensure_chain(product.category_names)
        images = None
        if opts.update_images_on_update:
            images = await self.images.resolve(product.images, opts.media_mode)
        return compact({
            "name": product.name,
            "description": product.description,
            "short_description": product.short_description,
            "regular_price": prices.regular,
            "sale_price": prices.sale,
            "manage_stock": product.manage_stock,
            "stock_quantity": product.stock_quantity,
            "status": product.status,
            "images": images,
            "categories": [{"id": i} for i in cat_ids] or None,
        })

    async def _create(self, product: CanonicalProduct, prices: _Prices) -> None:
        opts = self.options
        emit = self.emit
        if opts.narrowing or not opts.do_create_new:
            emit("skip_create", sku=product.sku, name=product.name)
            return

        cat_ids = await self.categories.ensure_chain(product.category_names)
        tag_ids = await self.tags.ensure_tags(product.tag_names)
        images = await self.images.resolve(product.images, opts.media_mode)
        payload = compact({
            "name": product.name,
            "type": "simple",
            "description": product.description,
            "short_description": product.short_description,
            "regular_price": prices.regular,
            "sale_price": prices.sale,
            "sku": product.sku,
            "manage_stock": product.manage_stock if product.manage_stock is not None else False,
            "stock_quantity": product.stock_quantity,
            "status": product.status or "publish",
            "images": images,
            "categories": [{"id": i} for i in cat_ids] or None,
            "tags": [{"id": i} for i in tag_ids] or None,
        })

        created = await self._create_with_recovery(product, payload, prices)
        if created and created.get("id"):
            self.state.existing_by_sku[product.sku] = {"id": created["id"], "sku": product.sku}
            self.state.report.mark_created(product.sku)
            emit("created_product", sku=product.sku, id=created["id"], name=product.name)

    async def _create_with_recovery(self, product: CanonicalProduct, payload: Dict[str, Any],
                                    prices: _Prices) -> Optional[dict]:
        """
        POST the product. Returns the created (or concurrently created) entity,
        or None when the create was deferred. Non-recoverable errors propagate.
        """
        try:
            return await self.client.create_product(payload)
        except RemoteError as e:
            if payload.get("images") and e.image_related:
                self.emit("image_upload_failed", sku=product.sku, error=str(e))
                return await self.client.create_product(_without_images(payload))
            if isinstance(e, ConflictError):
                return await self._recover_conflict(product, payload, prices, e)
            raise

    async def _recover_conflict(self, product: CanonicalProduct, payload: Dict[str, Any],
                                prices: _Prices, err: ConflictError) -> Optional[dict]:
        emit = self.emit
        deferred = DeferredCreate(
            sku=product.sku,
            name=product.name,
            payload=payload,
            regular_price=prices.regular,
            sale_price=prices.sale,
            stock_quantity=product.stock_quantity,
            manage_stock=product.manage_stock if product.manage_stock is not None else False,
        )
        try:
            maybe = await self.client.get_product_by_sku(product.sku)
        except RemoteError as e:
            logger.warning("[SYNC] SKU lookup after conflict failed for %s: %s", product.sku, e)
            emit("skip_conflict", sku=product.sku, name=product.name, error=str(err))
            self.state.deferred.append(deferred)
            return None

        if maybe and maybe.get("id"):
            self.state.existing_by_sku[product.sku] = {"id": maybe["id"], "sku": product.sku}
            await self.client.update_product(
                maybe["id"], _stock_price_payload(prices, product.manage_stock, product.stock_quantity)
            )
            emit("updated_stock_price", sku=product.sku, id=maybe["id"], name=product.name)
            return maybe

        await self._sleep(self.conflict_retry_delay)
        try:
            return await self.client.create_product(_without_images(payload))
        except RemoteError as e:
            if not isinstance(e, ConflictError):
                raise
            emit("skip_conflict", sku=product.sku, name=product.name, error=str(err))
            self.state.deferred.append(deferred)
            return None

    # ------------------------------------------------------------------
    # deferred pass
    # ------------------------------------------------------------------

    async def _retry_deferred(self, item: DeferredCreate) -> None:
        emit = self.emit
        report = self.state.report
        try:
            for attempt in range(1, self.deferred_max_attempts + 1):
                wait_ms = self.deferred_base_wait_ms * 2 ** (attempt - 1)
                await self._sleep(wait_ms / 1000)

                maybe = await self.client.get_product_by_sku(item.sku)
                if maybe and maybe.get("id"):
                    await self.client.update_product(maybe["id"], compact({
                        "regular_price": item.regular_price,
                        "sale_price": item.sale_price,
                        "manage_stock": item.manage_stock if item.manage_stock is not None else False,
                        "stock_quantity": item.stock_quantity,
                    }))
                    self.state.existing_by_sku[item.sku] = {"id": maybe["id"], "sku": item.sku}
                    report.mark_created(item.sku)
                    emit("updated_stock_price_deferred", sku=item.sku, id=maybe["id"], name=item.name)
                    return

                try:
                    created = await self.client.create_product(_without_images(item.payload))
                except ConflictError as e:
                    emit("retry_conflict_deferred", sku=item.sku, name=item.name,
                         attempt=attempt, waitMs=wait_ms, error=str(e))
                    continue
                except RemoteError as e:
                    emit("skip_conflict_deferred", sku=item.sku, name=item.name, error=str(e))
                    report.add_error(str(e), sku=item.sku)
                    return
                if created and created.get("id"):
                    self.state.existing_by_sku[item.sku] = {"id": created["id"], "sku": item.sku}
                    report.mark_created(item.sku)
                    emit("created_product_deferred", sku=item.sku, id=created["id"], name=item.name)
                    return

            emit("giveup_deferred", sku=item.sku, name=item.name, attempts=self.deferred_max_attempts)
            report.add_error(
                f"Create still conflicting after {self.deferred_max_attempts} attempts", sku=item.sku
            )
        except Exception as e:
            emit("error", sku=item.sku, name=item.name, error=str(e))
            report.add_error(str(e), sku=item.sku)

    # ------------------------------------------------------------------
    # delete-missing pass
    # ------------------------------------------------------------------

    async def _delete_missing(self) -> None:
        emit = self.emit
        report = self.state.report
        keep = self.state.input_skus
        for p in self.state.existing:
            sku = p.get("sku")
            if not sku or str(sku) in keep or not p.get("id"):
                continue
            try:
                await self.client.delete_product(p["id"])
            except Exception as e:
                emit("error", sku=sku, name=p.get("name"), error=str(e))
                report.add_error(str(e), sku=sku)
                continue
            report.mark_deleted(str(sku))
            emit("deleted_missing", id=p["id"], sku=sku, name=p.get("name"))
