from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag

from .normalizer import normalize_title, slug_from_href

LISTING_PREFIX = "/listing/"
TITLE_SELECTOR = "h2, h3, .title, .product-title, p"


@dataclass
class ListingLink:
    slug: str
    title: str
    image: str
    url: str


def absolute_url(url: str, base_url: str) -> str:
    if not url:
        return url
    if url.startswith("//"):
        return "https:" + url
    return urljoin(base_url + "/", url)


def is_listing_href(href: str, base_url: str) -> bool:
    if href.startswith(LISTING_PREFIX):
        return True
    parts = urlsplit(href)
    return (
        parts.scheme in ("http", "https")
        and parts.netloc == urlsplit(base_url).netloc
        and parts.path.startswith(LISTING_PREFIX)
    )


def _first_srcset_candidate(srcset: Optional[str]) -> str:
    if not srcset:
        return ""
    first = srcset.split(",")[0].strip()
    return first.split(" ")[0] if first else ""


def _pick_image(anchor: Tag) -> str:
    img = anchor.find("img")
    if img is not None:
        if img.get("src"):
            return img["src"]
        if img.get("data-src"):
            return img["data-src"]
    source = anchor.find("source", srcset=True)
    if source is not None:
        return _first_srcset_candidate(source.get("srcset"))
    if img is not None:
        return _first_srcset_candidate(img.get("srcset"))
    return ""


def _pick_title(anchor: Tag, slug: str) -> str:
    node = anchor.select_one(TITLE_SELECTOR)
    text = node.get_text(" ", strip=True) if node else ""
    return normalize_title(text or anchor.get("title") or slug, slug)


def extract_listing_links(html: str, base_url: str, require_image: bool = True) -> List[ListingLink]:
    """
    Listing cards on a category page, in page order. A slug repeated on the
    page keeps its first card that has an image. Cards without any image are
    dropped, or kept with an empty `image` when `require_image` is off.
    """
    soup = BeautifulSoup(html, "lxml")
    found: Dict[str, ListingLink] = {}
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        if not is_listing_href(href, base_url):
            continue
        slug = slug_from_href(href, base_url)
        current = found.get(slug)
        if not slug or (current is not None and current.image):
            continue
        image = _pick_image(a)
        if not image and (require_image or current is not None):
            continue
        found[slug] = ListingLink(
            slug=slug,
            title=_pick_title(a, slug),
            image=absolute_url(image, base_url),
            url=absolute_url(href, base_url),
        )
    return list(found.values())
