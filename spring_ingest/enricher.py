import logging, re, time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from .config import Settings
from .fetcher import Fetcher
from .normalizer import (
    PRODUCT_PARAM, clean_label, product_param, resolve_color_hex, split_type_and_color,
)
from .parser_listing import absolute_url
from .payloads import extract_store_listing, find_build_id, find_product_arrays, load_next_data
from .schema import DesignRecord, VariantRecord, now_iso

logger = logging.getLogger(__name__)

BUILD_ID_TTL_S = 5 * 60
UNKNOWN_ID = "unknown"


@dataclass
class BuildIdCache:
    """Last build id seen on the storefront, valid until `expires_at` (monotonic seconds)."""
    ttl_s: float = BUILD_ID_TTL_S
    clock: Callable[[], float] = time.monotonic
    value: Optional[str] = None
    expires_at: float = 0.0

    def get(self) -> Optional[str]:
        if self.value and self.clock() < self.expires_at:
            return self.value
        return None

    def put(self, build_id: str) -> None:
        self.value = build_id
        self.expires_at = self.clock() + self.ttl_s


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip() or None
    return None


def _first_of(*values: Any) -> Optional[str]:
    for v in values:
        s = _str_or_none(v)
        if s:
            return s
    return None


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    return [value] if value else []


def collect_store_listing_products(store_listing: Optional[dict]) -> List[dict]:
    if not isinstance(store_listing, dict):
        return []
    primary = _as_list(store_listing.get("primaryProduct"))
    more = store_listing.get("moreProducts")
    if isinstance(more, dict):
        more = more.get("items")
    related = store_listing.get("products")
    products = primary + (more if isinstance(more, list) else []) + (related if isinstance(related, list) else [])
    return [p for p in products if isinstance(p, dict)]


def _raw_color(prod: dict) -> Optional[str]:
    attrs = prod.get("attributes") if isinstance(prod.get("attributes"), dict) else {}
    raw = prod.get("color") or attrs.get("color") or attrs.get("displayColorName") or attrs.get("colour")
    if isinstance(raw, dict):
        raw = raw.get("name")
    if isinstance(raw, str) and raw.startswith("#"):
        return None
    return _str_or_none(raw)


def _raw_hex(prod: dict) -> Optional[str]:
    attrs = prod.get("attributes") if isinstance(prod.get("attributes"), dict) else {}
    color = prod.get("color")
    return _first_of(
        attrs.get("hex"),
        attrs.get("colorHex"),
        prod.get("hex"),
        color if isinstance(color, str) and color.startswith("#") else None,
    )


def _raw_price(prod: dict) -> Optional[str]:
    sizes = prod.get("sizes")
    size_price = sizes[0].get("price") if isinstance(sizes, list) and sizes and isinstance(sizes[0], dict) else None
    return _first_of(prod.get("price"), prod.get("priceUsd"), size_price)


def _raw_image(prod: dict, store_listing: Optional[dict]) -> Optional[str]:
    images = [img for img in _as_list(prod.get("images")) if isinstance(img, dict)]
    for key in ("src", "full"):
        for img in images:
            if _str_or_none(img.get(key)):
                return img[key]
    listing_images = (store_listing or {}).get("images")
    if isinstance(listing_images, list) and listing_images and isinstance(listing_images[0], dict):
        return _str_or_none(listing_images[0].get("src"))
    return None


class VariantCollector:
    """Accumulates variants of one design, deduplicating as it goes."""

    def __init__(self, design: DesignRecord, detail_url: str, base_url: str):
        self.design = design
        self.detail_url = detail_url
        self.base_url = base_url
        self.variants: List[VariantRecord] = []
        self._seen = set()

    def add(
        self,
        product_id: Any,
        label: str,
        image: Optional[str],
        price: Optional[str] = None,
        variation_id: Any = None,
        product_type: Optional[str] = None,
        color_name: Optional[str] = None,
        color_hex: Optional[str] = None,
    ) -> bool:
        pid = _str_or_none(product_id) or ""
        vid = _str_or_none(variation_id) or ""
        label = clean_label(label) or self.design.title
        color_key = color_hex or color_name or ""
        if vid:
            key = f"{pid}:{vid}:{color_key}"
        else:
            key = "::".join(part for part in (pid, color_key, label) if part)
        if not key or key in self._seen:
            return False
        self._seen.add(key)

        query_id = pid or vid
        checkout = self.detail_url
        if query_id and query_id != UNKNOWN_ID:
            checkout = str(httpx.URL(self.detail_url).copy_set_param(PRODUCT_PARAM, query_id))
        self.variants.append(VariantRecord(
            product_id=vid or pid or UNKNOWN_ID,
            label=label,
            image=absolute_url(image, self.base_url) if image else self.design.hero_image,
            price=price,
            checkout_url=checkout,
            product_type=product_type or None,
            color_name=color_name or None,
            color_hex=color_hex or None,
        ))
        return True

    def add_raw(self, prod: dict, label_source: Optional[str], image: Optional[str], variation_id: Any = None) -> bool:
        """Map one raw product object, deriving type and colour from a 'Type - Color' label if needed."""
        parsed_type, parsed_color = split_type_and_color(label_source)
        product_type = _first_of(prod.get("productType")) or parsed_type or _str_or_none(label_source) or self.design.title
        color_name = _raw_color(prod) or parsed_color
        color_hex = resolve_color_hex(_raw_hex(prod), color_name)
        label = " - ".join(part for part in (product_type, color_name) if part)
        return self.add(
            _first_of(prod.get("productId"), prod.get("id"), prod.get("teespringId"), prod.get("variationId")),
            label,
            image,
            _raw_price(prod),
            variation_id,
            product_type=product_type,
            color_name=color_name,
            color_hex=color_hex,
        )


class VariantEnricher:
    def __init__(self, settings: Settings, fetcher: Fetcher, build_ids: Optional[BuildIdCache] = None):
        self.settings = settings
        self.fetcher = fetcher
        self.build_ids = build_ids or BuildIdCache()

    def detail_url(self, design: DesignRecord) -> str:
        if design.listing_url:
            return design.listing_url
        m = re.match(r"^(.+?)-(\d+)$", design.slug)
        base, pid = (m.group(1), m.group(2)) if m else (design.slug, None)
        url = f"{self.settings.base_url}/listing/{base}"
        return f"{url}?{PRODUCT_PARAM}={pid}" if pid else url

    def _listing_path_slug(self, detail_url: str) -> str:
        path = httpx.URL(detail_url).path
        return path.split("/listing/", 1)[-1].strip("/") or path.strip("/")

    async def _from_structured_endpoint(self, html: str, detail_url: str, out: VariantCollector) -> None:
        build_id = find_build_id(html)
        if build_id:
            self.build_ids.put(build_id)
        else:
            build_id = self.build_ids.get()
        if not build_id:
            return
        data_url = (
            f"{self.settings.base_url}/_next/data/{quote(build_id, safe='')}"
            f"/listing/{self._listing_path_slug(detail_url)}/default.json"
        )
        data = await self.fetcher.fetch_structured(data_url)
        if not isinstance(data, dict):
            return
        page_props = data.get("pageProps") if isinstance(data.get("pageProps"), dict) else {}
        store_listing = page_props.get("storeListing") or data.get("storeListing")
        self._add_store_listing(store_listing, out, "structured endpoint")

    def _add_store_listing(self, store_listing: Optional[dict], out: VariantCollector, source: str) -> None:
        products = collect_store_listing_products(store_listing)
        if not products:
            return
        logger.info("[ENRICH]     Found %d products via %s for %s", len(products), source, out.design.slug)
        for prod in products:
            out.add_raw(
                prod,
                _first_of(prod.get("productType"), prod.get("title")),
                _raw_image(prod, store_listing),
                variation_id=_first_of(prod.get("variationId"), prod.get("teespringId"), prod.get("id")),
            )

    def _from_next_data(self, html: str, out: VariantCollector) -> None:
        tree = load_next_data(html)
        if tree is None:
            return
        for prod in find_product_arrays(tree):
            label = _first_of(prod.get("productType"), prod.get("name"), prod.get("title"))
            image = _first_of(prod.get("image"), prod.get("mockupUrl"), prod.get("imageUrl"))
            out.add_raw(prod, label, image)

    def _from_anchors(self, html: str, out: VariantCollector) -> None:
        soup = BeautifulSoup(html, "lxml")
        for a in soup.select(f'a[href*="?{PRODUCT_PARAM}="]'):
            pid = product_param(a["href"], self.settings.base_url)
            if not pid:
                continue
            label = a.get_text(" ", strip=True) or out.design.title
            kind, color = split_type_and_color(label)
            out.add(pid, label, None, product_type=kind, color_name=color,
                    color_hex=resolve_color_hex(None, color))

    async def enrich(self, design: DesignRecord) -> DesignRecord:
        """
        Fetch the listing page and collect every purchasable variant. Strategies
        run in order until one yields a variant; the last resort is a single
        placeholder built from the design itself. FetchError propagates.
        """
        url = self.detail_url(design)
        logger.info("[ENRICH]   -> Fetch %s", url)
        html = await self.fetcher.fetch_markup(url)
        out = VariantCollector(design, url, self.settings.base_url)

        await self._from_structured_endpoint(html, url, out)
        if not out.variants:
            self._add_store_listing(extract_store_listing(html), out, "hydration payload")
        if not out.variants:
            self._from_next_data(html, out)
        if not out.variants:
            self._from_anchors(html, out)
        if not out.variants:
            out.add(UNKNOWN_ID, design.title, design.hero_image)

        logger.info("[ENRICH]     Collected %d variants for %s", len(out.variants), design.slug)
        return design.model_copy(update={"variants": out.variants, "last_indexed": now_iso()})
