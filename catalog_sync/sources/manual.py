# catalog_sync/sources/manual.py
# Single hand-entered product, used to test a sync end to end on one SKU.
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from catalog_sync.sources.models import CanonicalProduct, SourceBatch
from catalog_sync.sync.components.price import to_price_string
from catalog_sync.sync.events import Emit


class ManualProductInput(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    sku: str = Field(min_length=1)
    name: Optional[str] = None
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    stock_quantity: Optional[int] = None
    manage_stock: Optional[bool] = None


def build_manual_product(data: ManualProductInput) -> CanonicalProduct:
    manage_stock = data.manage_stock
    if manage_stock is None and data.stock_quantity is not None:
        manage_stock = True
    return CanonicalProduct(
        sku=data.sku,
        name=data.name or data.sku,
        regular_price=to_price_string(data.regular_price),
        sale_price=to_price_string(data.sale_price),
        stock_quantity=data.stock_quantity,
        manage_stock=manage_stock,
        status="publish",
    )


async def load_manual_batch(emit: Emit, data: ManualProductInput) -> SourceBatch:
    product = build_manual_product(data)
    emit("info", message="Manual single product test", sku=product.sku)
    return SourceBatch(products=[product], raw_count=1)
