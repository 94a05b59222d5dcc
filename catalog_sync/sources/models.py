# catalog_sync/sources/models.py
# Canonical product record: the shape every source adapter maps into.
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 40
MAX_TAG_WORDS = 6
MAX_TAGS_PER_PRODUCT = 5

_URL_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://\S+$", re.IGNORECASE)


def is_url(value: Any) -> bool:
    return isinstance(value, str) and bool(_URL_RE.match(value.strip()))


def sanitize_tag_names(names: Iterable[Any]) -> List[str]:
    """Trim, drop over-long or wordy names, dedupe case-insensitively, keep at most five."""
    out: List[str] = []
    seen: set[str] = set()
    for raw in names or []:
        n = str(raw or "").strip()
        if not n:
            continue
        if len(n) > MAX_TAG_LENGTH:
            continue
        if len(n.split()) > MAX_TAG_WORDS:
            continue
        key = n.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(n)
        if len(out) >= MAX_TAGS_PER_PRODUCT:
            break
    return out


class ImageRef(BaseModel):
    src: str
    name: Optional[str] = None
    alt: Optional[str] = None

    @field_validator("src")
    @classmethod
    def _absolute_url(cls, v: str) -> str:
        v = (v or "").strip()
        if not _URL_RE.match(v):
            raise ValueError(f"not a URL: {v!r}")
        return v


class CategoryRef(BaseModel):
    name: str


class TagRef(BaseModel):
    name: str


class CanonicalProduct(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    short_description: Optional[str] = None
    regular_price: Optional[str] = None
    sale_price: Optional[str] = None
    stock_quantity: Optional[int] = None
    manage_stock: Optional[bool] = None
    status: Optional[Literal["draft", "publish"]] = None
    images: List[ImageRef] = Field(default_factory=list)
    categories: List[CategoryRef] = Field(default_factory=list)
    tags: List[TagRef] = Field(default_factory=list)

    @field_validator("sku", mode="before")
    @classmethod
    def _sku_as_text(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _sanitize_tags(cls, v: Any) -> Any:
        if not v:
            return []
        names = [t.get("name") if isinstance(t, dict) else getattr(t, "name", t) for t in v]
        return [{"name": n} for n in sanitize_tag_names(names)]

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    @property
    def tag_names(self) -> List[str]:
        return [t.name for t in self.tags]


@dataclass
class SourceBatch:
    """Output of a source adapter for one run."""
    products: List[CanonicalProduct]
    saved_file: Optional[str] = None
    raw_count: int = 0
    invalid_count: int = 0


def validate_products(candidates: Iterable[dict], source: str = "source") -> tuple[List[CanonicalProduct], int]:
    """Validate raw candidate dicts; invalid ones are logged and dropped."""
    valid: List[CanonicalProduct] = []
    invalid = 0
    for cand in candidates:
        try:
            valid.append(CanonicalProduct.model_validate(cand))
        except ValidationError as e:
            invalid += 1
            logger.warning("[%s] dropping invalid product %r: %s", source,
                           (cand or {}).get("sku"), e.errors(include_url=False))
    return valid, invalid
