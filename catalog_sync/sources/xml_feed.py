#==========================================================================================
# catalog_sync/sources/xml_feed.py
# Static XML product feed → CanonicalProduct.
# Feeds in the wild disagree on element names, so every field accepts a list of aliases
# (child element or attribute).
#==========================================================================================
from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Sequence

from catalog_sync.errors import FatalError
from catalog_sync.sources.models import CanonicalProduct, SourceBatch, validate_products
from catalog_sync.sync.components.price import parse_locale_decimal, to_price_string

logger = logging.getLogger(__name__)

PRODUCT_PATHS = ("product", "Product", "item")
ROOT_TAGS = {"products": "product", "Products": "Product", "items": "item"}

SKU_KEYS = ("sku", "SKU", "Sku", "productCode", "ProductCode", "code", "Code", "id", "ID")
NAME_KEYS = ("name", "Name", "title", "Title", "productName", "ProductName")
DESCRIPTION_KEYS = ("description", "Description", "longDescription", "desc", "Desc")
SHORT_DESCRIPTION_KEYS = ("short_description", "ShortDescription", "shortDesc", "ShortDesc", "summary", "Summary")
REGULAR_PRICE_KEYS = ("regular_price", "price", "RegularPrice", "Price")
SALE_PRICE_KEYS = ("sale_price", "SalePrice")
STOCK_KEYS = ("stock_quantity", "stock", "StockQuantity", "Stock")
MANAGE_STOCK_KEYS = ("manage_stock", "manageStock")
IMAGE_KEYS = ("images", "Images", "image", "Image")
CATEGORY_KEYS = ("categories", "Categories", "category", "Category")
TAG_KEYS = ("tags", "Tags", "tag", "Tag")

_TRUE = {"1", "true", "yes", "on", "y", "evet"}


def _text(el: Optional[ET.Element]) -> Optional[str]:
    if el is None or el.text is None:
        return None
    t = el.text.strip()
    return t or None


def _first(el: ET.Element, keys: Sequence[str]) -> Optional[str]:
    """Child text first, then attribute, in alias order."""
    for k in keys:
        v = _text(el.find(k))
        if v is not None:
            return v
    for k in keys:
        v = (el.get(k) or "").strip()
        if v:
            return v
    return None


def _values(el: ET.Element, keys: Sequence[str], value_keys: Sequence[str]) -> List[str]:
    """
    Values of a repeatable field. Handles
      <images><image>u1</image><image>u2</image></images>
      <image>u1</image><image>u2</image>
      <images><image src="u1"/></images>  /  <image><url>u1</url></image>
    """
    out: List[str] = []

    def leaf(node: ET.Element) -> Optional[str]:
        return _text(node) or _first(node, value_keys)

    for k in keys:
        for node in el.findall(k):
            children = list(node)
            if children and _first(node, value_keys) is None:
                for child in children:
                    v = leaf(child)
                    if v:
                        out.append(v)
            else:
                v = leaf(node)
                if v:
                    out.append(v)
    return out


def _truthy(v: Optional[str]) -> bool:
    return (v or "").strip().lower() in _TRUE


def _stock(v: Optional[str]) -> Optional[int]:
    d = parse_locale_decimal(v)
    return int(d) if d is not None else None


def element_to_candidate(el: ET.Element) -> Dict[str, Any]:
    stock_quantity = _stock(_first(el, STOCK_KEYS))
    manage_raw = _first(el, MANAGE_STOCK_KEYS)
    manage_stock = _truthy(manage_raw) if manage_raw is not None else stock_quantity is not None

    status = _first(el, ("status", "Status"))
    if status:
        status = status.lower()
    else:
        active = _first(el, ("active", "Active"))
        if active is not None:
            status = "publish" if _truthy(active) else "draft"

    return {
        "sku": _first(el, SKU_KEYS),
        "name": _first(el, NAME_KEYS),
        "description": _first(el, DESCRIPTION_KEYS),
        "short_description": _first(el, SHORT_DESCRIPTION_KEYS),
        "regular_price": to_price_string(_first(el, REGULAR_PRICE_KEYS)),
        "sale_price": to_price_string(_first(el, SALE_PRICE_KEYS)),
        "stock_quantity": stock_quantity,
        "manage_stock": manage_stock,
        "status": status,
        "images": [{"src": s} for s in _values(el, IMAGE_KEYS, ("src", "url", "Url", "URL"))],
        "categories": [{"name": n} for n in _values(el, CATEGORY_KEYS, ("name", "Name"))],
        "tags": [{"name": n} for n in _values(el, TAG_KEYS, ("name", "Name"))],
    }


def _product_elements(root: ET.Element) -> List[ET.Element]:
    if root.tag in ROOT_TAGS:
        return root.findall(ROOT_TAGS[root.tag])
    # single-product document or an extra wrapper around the list
    for container, item in ROOT_TAGS.items():
        found = root.findall(f"{container}/{item}")
        if found:
            return found
    if root.tag in PRODUCT_PATHS:
        return [root]
    return []


def parse_xml_string(xml_text: str) -> tuple[List[CanonicalProduct], int, int]:
    """Returns (valid products, raw count, invalid count)."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise FatalError(f"XML feed could not be parsed: {e}") from e
    elements = _product_elements(root)
    valid, invalid = validate_products((element_to_candidate(el) for el in elements), source="xml")
    return valid, len(elements), invalid


def load_xml_batch(xml_path: str) -> SourceBatch:
    if not xml_path:
        raise FatalError("XML path is not configured")
    if not os.path.exists(xml_path):
        raise FatalError(f"XML path not found: {xml_path}")
    with open(xml_path, "r", encoding="utf-8") as f:
        text = f.read()
    products, raw_count, invalid = parse_xml_string(text)
    logger.info("[XML] %s: %d products (%d invalid)", xml_path, len(products), invalid)
    return SourceBatch(products=products, raw_count=raw_count, invalid_count=invalid)
