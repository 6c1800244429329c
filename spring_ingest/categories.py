import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

import httpx
from bs4 import BeautifulSoup

from .config import CATEGORY_PATHS, Settings
from .fetcher import Fetcher
from .pacing import Pacer
from .parser_listing import extract_listing_links
from .schema import DesignRecord
from .warmup import SessionBlocked

logger = logging.getLogger(__name__)

VIEW_ALL_WORDS = ("view all", "show all", "see all")
SECTION_SELECTOR = ".category-section, .product-grid-container, section"
CONTROL_SELECTOR = "a[href], button[data-href], button[data-url]"
PAGE_PARAM = "page"


@dataclass
class CategoryEntry:
    normalized_path: str
    first_url: str
    title: str
    first_html: str = ""
    first_page: int = 1
    is_subcategory: bool = False


@dataclass
class WalkResult:
    listings: List[DesignRecord] = field(default_factory=list)
    stopped_early: bool = False
    pages_fetched: int = 0


def _control_href(el) -> Optional[str]:
    return el.get("href") or el.get("data-href") or el.get("data-url")


def _is_view_all(el) -> bool:
    text = (el.get_text(" ", strip=True) or el.get("aria-label") or "").lower()
    test_id = (el.get("data-testid") or "").lower()
    return any(w in text for w in VIEW_ALL_WORDS) or "view-all" in test_id


def find_view_all_href(soup: BeautifulSoup) -> Optional[str]:
    for el in soup.select(CONTROL_SELECTOR):
        if _is_view_all(el):
            href = _control_href(el)
            if href:
                return href
    return None


def find_subcategories(soup: BeautifulSoup) -> List[Tuple[str, str]]:
    """(section title, view-all href) for every named block with its own control."""
    found = []
    for section in soup.select(SECTION_SELECTOR):
        heading = section.select_one("h2, h3, .section-title")
        title = heading.get_text(" ", strip=True) if heading else "Other"
        for el in section.select("a, button"):
            if _is_view_all(el) and _control_href(el):
                found.append((title, _control_href(el)))
                break
    return found


def page_number(url: str) -> int:
    raw = httpx.URL(url).params.get(PAGE_PARAM)
    try:
        return max(1, int(raw)) if raw else 1
    except ValueError:
        return 1


def strip_page(url: str) -> str:
    """Path plus query of `url` without the page parameter."""
    u = httpx.URL(url).copy_remove_param(PAGE_PARAM)
    query = u.query.decode()
    return u.path + (f"?{query}" if query else "")


def build_page_url(base_url: str, path: str, page: int) -> str:
    url = httpx.URL(base_url).join(path)
    if page <= 1:
        return str(url.copy_remove_param(PAGE_PARAM))
    return str(url.copy_set_param(PAGE_PARAM, str(page)))


class CategoryWalker:
    def __init__(self, settings: Settings, fetcher: Fetcher, pacer: Pacer):
        self.settings = settings
        self.fetcher = fetcher
        self.pacer = pacer

    def _absolute(self, href: str) -> str:
        return str(httpx.URL(self.settings.base_url).join(href))

    async def resolve_entry(self, base_path: str, is_subcategory: bool = False, parent_title: str = "") -> List[CategoryEntry]:
        """
        Landing page -> entries to walk. Subcategory entries come first and are
        left unfetched; the last entry is this page's own listing.
        """
        results: List[CategoryEntry] = []
        title = parent_title or base_path
        try:
            initial_url = self._absolute(base_path)
            logger.info("[CATEGORY] Fetching category: %s", initial_url)
            initial_html = await self.fetcher.fetch_markup(initial_url)
            soup = BeautifulSoup(initial_html, "lxml")

            if not is_subcategory:
                seen_paths = set()
                for section_title, href in find_subcategories(soup):
                    full = self._absolute(href)
                    if full in seen_paths:
                        continue
                    seen_paths.add(full)
                    logger.info("[CATEGORY]   Found subcategory: %s -> %s", section_title, full)
                    results.append(CategoryEntry(
                        normalized_path=href,
                        first_url=full,
                        title=f"{parent_title} › {section_title}" if parent_title else section_title,
                        is_subcategory=True,
                    ))

            view_all = find_view_all_href(soup)
            view_all_url = self._absolute(view_all) if view_all else None
            if view_all_url and httpx.URL(view_all_url) != httpx.URL(initial_url):
                logger.info("[CATEGORY]   Found view-all link: %s", view_all_url)
                view_all_html = await self.fetcher.fetch_markup(view_all_url)
                results.append(CategoryEntry(
                    normalized_path=strip_page(view_all_url),
                    first_url=view_all_url,
                    first_html=view_all_html,
                    first_page=page_number(view_all_url),
                    title=title,
                    is_subcategory=is_subcategory,
                ))
            else:
                results.append(CategoryEntry(
                    normalized_path=base_path,
                    first_url=initial_url,
                    first_html=initial_html,
                    title=title,
                    is_subcategory=is_subcategory,
                ))
        except SessionBlocked:
            raise
        except Exception as exc:
            logger.error("[CATEGORY] Error resolving category %s: %s", base_path, exc)
        return results

    async def walk(self, entry: CategoryEntry, seen: Set[str], cat_key: str, known: Set[str]) -> WalkResult:
        """
        Page forward from the entry's first page. Stops on two empty pages in a
        row, on a run of `early_stop_threshold` already-known slugs, or at the
        page ceiling.
        """
        result = WalkResult()
        threshold = self.settings.early_stop_threshold
        page = entry.first_page
        consecutive_empty = 0
        consecutive_known = 0
        first_consumed = False

        while (
            result.pages_fetched < self.settings.max_category_pages
            and consecutive_empty < 2
            and consecutive_known < threshold
        ):
            try:
                if not first_consumed and entry.first_html:
                    html = entry.first_html
                    first_consumed = True
                else:
                    url = build_page_url(self.settings.base_url, entry.normalized_path, page)
                    logger.info("[CATEGORY]   [%s] Page %d -> %s", entry.title, page, url)
                    html = await self.fetcher.fetch_markup(url)
                    await self.pacer.pause(self.settings.category_page_delay_ms)
                result.pages_fetched += 1

                new_on_page = known_on_page = 0
                # Known cards count toward early stop even without an image.
                for link in extract_listing_links(html, self.settings.base_url, require_image=False):
                    if link.slug in seen:
                        continue
                    if link.slug in known:
                        seen.add(link.slug)
                        known_on_page += 1
                        consecutive_known += 1
                        continue
                    if not link.image:
                        continue
                    seen.add(link.slug)
                    consecutive_known = 0
                    new_on_page += 1
                    result.listings.append(DesignRecord(
                        slug=link.slug,
                        title=link.title,
                        category=cat_key,
                        hero_image=link.image,
                        listing_url=link.url,
                    ))

                if new_on_page + known_on_page == 0:
                    consecutive_empty += 1
                    logger.info("[CATEGORY]   No products found on page %d", page)
                else:
                    consecutive_empty = 0
                    logger.info(
                        "[CATEGORY]   Page %d: %d new, %d existing (%d/%d toward early stop)",
                        page, new_on_page, known_on_page, consecutive_known, threshold,
                    )
            except SessionBlocked:
                raise
            except Exception as exc:
                logger.error("[CATEGORY]   Error processing page %d: %s", page, exc)
                result.pages_fetched += 1
                consecutive_empty += 1
            page += 1

        if consecutive_known >= threshold:
            result.stopped_early = True
            logger.info("[CATEGORY]   Early stop: %d consecutive existing items", consecutive_known)
        return result

    async def crawl_category(self, cat_key: str, known: Set[str]) -> List[DesignRecord]:
        path = CATEGORY_PATHS[cat_key]
        listings: List[DesignRecord] = []
        seen: Set[str] = set()
        stopped_early = False
        logger.info("[CATEGORY] === Starting crawl of category: %s (%s) ===", cat_key, path)

        for entry in await self.resolve_entry(path, False, cat_key):
            if stopped_early:
                break
            logger.info("[CATEGORY] Processing %s: %s", "subcategory" if entry.is_subcategory else "category", entry.title)
            if entry.is_subcategory and not entry.first_html:
                await self.pacer.pause(self.settings.category_resolve_delay_ms)
                sub_entries = await self.resolve_entry(entry.normalized_path, True, entry.title)
            else:
                sub_entries = [entry]
            for sub in sub_entries:
                if stopped_early:
                    break
                walked = await self.walk(sub, seen, cat_key, known)
                listings.extend(walked.listings)
                stopped_early = walked.stopped_early

        logger.info(
            "[CATEGORY] === Finished %s: %d unique products%s ===",
            cat_key, len(listings), " (stopped early)" if stopped_early else "",
        )
        return listings
