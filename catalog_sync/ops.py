#===========================================================================
# catalog_sync/ops.py
# Bulk maintenance on the whole WooCommerce catalog:
#   - increase_prices_globally: margin on every (filtered) product
#   - delete_all: hard-delete every product and category, logged to JSONL
#===========================================================================
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from catalog_sync.sync.components.price import apply_margin
from catalog_sync.sync.events import SyncEvent

logger = logging.getLogger("uvicorn.error")


class PriceOpsOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    percent: float = Field(allow_inf_nan=False)
    apply_on: Literal["regular", "sale", "both"] = "regular"
    round_to_integer: bool = True
    category_ids: List[int] = Field(default_factory=list)
    tag_ids: List[int] = Field(default_factory=list)
    category_name_includes: Optional[str] = None
    tag_name_includes: Optional[str] = None


def _ids(items: Optional[List[dict]]) -> List[int]:
    return [i.get("id") for i in items or [] if isinstance(i, dict)]


def _names(items: Optional[List[dict]]) -> List[str]:
    return [str(i.get("name") or "").lower() for i in items or [] if isinstance(i, dict)]


def matches_filters(product: dict, opts: PriceOpsOptions) -> bool:
    if opts.category_ids and not set(_ids(product.get("categories"))) & set(opts.category_ids):
        return False
    if opts.tag_ids and not set(_ids(product.get("tags"))) & set(opts.tag_ids):
        return False
    if opts.category_name_includes:
        needle = opts.category_name_includes.lower()
        if not any(needle in n for n in _names(product.get("categories"))):
            return False
    if opts.tag_name_includes:
        needle = opts.tag_name_includes.lower()
        if not any(needle in n for n in _names(product.get("tags"))):
            return False
    return True


def _price_payload(product: dict, opts: PriceOpsOptions) -> Dict[str, str]:
    payload: Dict[str, str] = {}
    for field in ("regular_price", "sale_price"):
        if opts.apply_on not in (field.split("_")[0], "both"):
            continue
        current = product.get(field)
        if not current:
            continue
        payload[field] = apply_margin(str(current), opts.percent, opts.round_to_integer)
    return payload


async def increase_prices_globally(client, opts: PriceOpsOptions) -> Dict[str, int]:
    products = await client.list_all_products()
    updated = failed = 0
    for p in products:
        if not p.get("id") or not matches_filters(p, opts):
            continue
        payload = _price_payload(p, opts)
        if not payload:
            continue
        try:
            await client.update_product(p["id"], payload)
            updated += 1
        except Exception as e:
            failed += 1
            logger.error("[OPS] price update failed for product %s: %s", p.get("id"), e)
    logger.info("[OPS] price increase %.2f%% on %s: updated=%d failed=%d total=%d",
                opts.percent, opts.apply_on, updated, failed, len(products))
    return {"updated": updated, "failed": failed, "total": len(products)}


async def delete_all(client, log_dir: str, store_url: str = "") -> AsyncIterator[SyncEvent]:
    """
    Hard-delete every product, then every category. Each event is also appended
    to delete-all-<timestamp>.jsonl under log_dir.
    """
    os.makedirs(log_dir, exist_ok=True)
    now = datetime.now(timezone.utc)
    log_name = f"delete-all-{now.strftime('%Y%m%d-%H%M%S')}.jsonl"
    log_path = os.path.join(log_dir, log_name)

    def event(type_: str, **fields: Any) -> SyncEvent:
        ev = SyncEvent(type_, fields)
        try:
            with open(log_path, "a", encoding="utf-8") as f:
                f.write(ev.to_line())
        except OSError as e:
            logger.warning("[OPS] delete-all log write failed: %s", e)
        return ev

    yield event("start", at=now.isoformat())
    yield event("context", store=store_url)
    yield event("saved_file", file=log_name)
    try:
        products = await client.list_all_products()
        yield event("info", message=f"Total products: {len(products)}")
        for p in products:
            try:
                await client.delete_product(p["id"])
                yield event("deleted_product", id=p["id"], name=p.get("name"), sku=p.get("sku"))
            except Exception as e:
                yield event("error", scope="product", id=p.get("id"), name=p.get("name"), error=str(e))

        categories = await client.list_all_categories()
        yield event("info", message=f"Total categories: {len(categories)}")
        for c in categories:
            try:
                await client.delete_category(c["id"])
                yield event("deleted_category", id=c["id"], name=c.get("name"))
            except Exception as e:
                yield event("error", scope="category", id=c.get("id"), name=c.get("name"), error=str(e))

        logger.info("[OPS] delete-all finished (%d products, %d categories)", len(products), len(categories))
        yield event("done", message="Delete finished")
    except Exception as e:
        logger.error("[OPS] delete-all aborted: %s", e)
        yield event("fatal", message=str(e))
