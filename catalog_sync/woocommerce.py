#==========================================================================================
# catalog_sync/woocommerce.py
# WooCommerce API interface module.
# Products, categories, tags and WP media lookups. Every listing paginates to the end.
#==========================================================================================
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from catalog_sync.config import settings
from catalog_sync.errors import (
    ConflictMatcher,
    FatalError,
    RemoteError,
    TransientError,
    classify_response,
)
from catalog_sync.sync.components.util import url_basename

logger = logging.getLogger("uvicorn.error")

PRODUCTS = "/wp-json/wc/v3/products"
CATEGORIES = "/wp-json/wc/v3/products/categories"
TAGS = "/wp-json/wc/v3/products/tags"
MEDIA = "/wp-json/wp/v2/media"


class WooClient:
    """
    Thin async client for the WooCommerce REST API (wc/v3) plus the WP media endpoint.
    Raises the typed errors from catalog_sync.errors on any non-2xx answer.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        *,
        wp_username: str = "",
        wp_password: str = "",
        timeout: float = 20.0,
        verify: bool = True,
        per_page: int = 100,
        conflict_matcher: ConflictMatcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not base_url or not api_key or not api_secret:
            raise FatalError("WooCommerce configuration missing (WC_BASE_URL/WC_API_KEY/WC_API_SECRET)")
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        self.matcher = conflict_matcher or ConflictMatcher.from_phrases()
        self._auth = (api_key, api_secret)
        # WP media endpoint wants an Application Password; fall back to the Woo keys
        self._wp_auth = (wp_username, wp_password) if wp_username and wp_password else self._auth
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            verify=verify,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> "WooClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- plumbing ----

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        auth: tuple[str, str] | None = None,
    ) -> Any:
        try:
            resp = await self._client.request(method, path, params=params, json=json, auth=auth or self._auth)
        except httpx.TimeoutException as e:
            raise TransientError(f"WooCommerce request timed out: {method} {path}: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"WooCommerce request failed: {method} {path}: {e}") from e

        if resp.status_code >= 400:
            err = classify_response(resp.status_code, resp.reason_phrase, resp.text, self.matcher)
            logger.debug("[WC] %s %s -> %s", method, path, err)
            raise err
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteError(
                f"WooCommerce returned a non-JSON body for {method} {path}",
                status_code=resp.status_code,
            ) from e

    async def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None,
                        auth: tuple[str, str] | None = None) -> List[dict]:
        """Fetch every page; stops on the first short page."""
        items: List[dict] = []
        page = 1
        while True:
            query = {**(params or {}), "per_page": self.per_page, "page": page}
            batch = await self._request("GET", path, params=query, auth=auth)
            if not isinstance(batch, list):
                raise FatalError(f"Unexpected listing payload from {path} (page {page})")
            items.extend(batch)
            if len(batch) < self.per_page:
                break
            page += 1
        return items

    # ---- Products ----

    async def list_all_products(self) -> List[dict]:
        products = await self._paginate(PRODUCTS)
        logger.info("[WC] loaded %d products", len(products))
        return products

    async def get_product_by_sku(self, sku: str) -> Optional[dict]:
        data = await self._request("GET", PRODUCTS, params={"sku": sku, "per_page": 1})
        if isinstance(data, list) and data:
            return data[0]
        return None

    async def create_product(self, payload: dict) -> dict:
        return await self._request("POST", PRODUCTS, json=payload)

    async def update_product(self, product_id: int, payload: dict) -> dict:
        return await self._request("PUT", f"{PRODUCTS}/{product_id}", json=payload)

    async def delete_product(self, product_id: int) -> dict:
        # force=true skips the bin: hard delete
        return await self._request("DELETE", f"{PRODUCTS}/{product_id}", params={"force": "true"})

    # ---- Categories ----

    async def list_all_categories(self) -> List[dict]:
        return await self._paginate(CATEGORIES)

    async def create_category(self, name: str, parent: Optional[int] = None) -> dict:
        payload: Dict[str, Any] = {"name": name}
        if parent:
            payload["parent"] = parent
        return await self._request("POST", CATEGORIES, json=payload)

    async def delete_category(self, category_id: int) -> dict:
        return await self._request("DELETE", f"{CATEGORIES}/{category_id}", params={"force": "true"})

    # ---- Tags ----

    async def list_all_tags(self) -> List[dict]:
        return await self._paginate(TAGS)

    async def create_tag(self, name: str) -> dict:
        return await self._request("POST", TAGS, json={"name": name})

    # ---- Media ----

    async def find_media_by_filename(self, basename: str) -> Optional[dict]:
        """
        Look up an attachment in the WP media library whose file name equals `basename`.
        WP search is fuzzy, so candidates are filtered on the source_url file name; the
        slug only carries the stem, so it cannot tell pump.jpg from pump.png.
        """
        if not basename:
            return None
        stem = basename.rsplit(".", 1)[0]
        found = await self._request(
            "GET", MEDIA, params={"search": stem, "per_page": 20}, auth=self._wp_auth
        )
        wanted = basename.lower()
        for media in found or []:
            if not isinstance(media, dict):
                continue
            if url_basename(media.get("source_url") or "").lower() == wanted:
                return media
        return None


def build_woo_client(
    base_url: str | None = None,
    api_key: str | None = None,
    api_secret: str | None = None,
    **kwargs,
) -> WooClient:
    """Client from explicit credentials, falling back to environment settings."""
    kwargs.setdefault("wp_username", settings.WP_USERNAME)
    kwargs.setdefault("wp_password", settings.WP_PASSWORD)
    kwargs.setdefault("timeout", settings.WC_TIMEOUT)
    kwargs.setdefault("verify", settings.WC_VERIFY_SSL)
    kwargs.setdefault("conflict_matcher", ConflictMatcher.from_settings(settings.WOO_CONFLICT_PATTERN))
    return WooClient(
        base_url or settings.WC_BASE_URL,
        api_key or settings.WC_API_KEY,
        api_secret or settings.WC_API_SECRET,
        **kwargs,
    )
