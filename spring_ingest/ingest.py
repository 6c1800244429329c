import asyncio, logging, sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import httpx

from .categories import CategoryWalker
from .config import Settings, get_settings
from .enricher import VariantEnricher
from .fetcher import BrowserHeaders, Fetcher, build_client
from .merger import designs_from_entries, group_previous_entries, is_complete, merge_catalog
from .pacing import Pacer
from .schema import CatalogSnapshot, DesignRecord
from .store import load_snapshot, write_snapshot
from .warmup import SessionBlocked, WarmupController

logger = logging.getLogger(__name__)


@dataclass
class RunStats:
    discovered: int = 0
    new: int = 0
    updated: int = 0
    enriched: int = 0
    skipped: int = 0
    failed: int = 0
    retried_ok: int = 0
    preserved: int = 0
    dropped: int = 0
    entries: int = 0


class IngestJob:
    """
    One ingestion run: warm up, discover, enrich, merge, write.
    Owns every piece of per-run state; nothing survives the process.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        pacer: Optional[Pacer] = None,
        headers: Optional[BrowserHeaders] = None,
    ):
        self.settings = settings
        self.pacer = pacer or Pacer(settings.jitter_factor)
        headers = headers or BrowserHeaders()
        self.warmup = WarmupController(settings, client, self.pacer, headers)
        self.fetcher = Fetcher(settings, client, self.warmup, self.pacer, headers)
        self.walker = CategoryWalker(settings, self.fetcher, self.pacer)
        self.enricher = VariantEnricher(settings, self.fetcher)
        self.stats = RunStats()

    async def discover(self, known: Set[str]) -> List[DesignRecord]:
        designs: List[DesignRecord] = []
        by_slug: Dict[str, DesignRecord] = {}
        for cat_key in self.settings.enabled_categories():
            try:
                logger.info("[INGEST] ===== PROCESSING CATEGORY: %s =====", cat_key.upper())
                found = await self.walker.crawl_category(cat_key, known)
                new_count = updated = 0
                for design in found:
                    current = by_slug.get(design.slug)
                    if current is None:
                        by_slug[design.slug] = design
                        designs.append(design)
                        new_count += 1
                    elif cat_key != "all" and current.category == "all":
                        current.category = cat_key
                        updated += 1
                self.stats.new += new_count
                self.stats.updated += updated
                logger.info(
                    "[INGEST] Added %d new designs from %s, updated %d categories (%d total so far)",
                    new_count, cat_key, updated, len(designs),
                )
                await self.pacer.pause(self.settings.category_gap_delay_ms)
            except SessionBlocked:
                raise
            except Exception as exc:
                logger.error("[INGEST] Error processing category %s: %s", cat_key, exc)
                await self.pacer.pause(self.settings.category_gap_delay_ms * 2)
        self.stats.discovered = len(designs)
        return designs

    async def _enrich_one(self, design: DesignRecord, batch_index: int, existing: Dict[str, DesignRecord]) -> Tuple[DesignRecord, bool]:
        if design.slug in existing:
            self.stats.skipped += 1
            if self.stats.skipped % 50 == 0:
                logger.info("[ENRICH] Skipped %d already-enriched items...", self.stats.skipped)
            return existing[design.slug], False
        await self.pacer.pause(batch_index * self.settings.request_delay_ms)
        try:
            enriched = await self.enricher.enrich(design)
        except SessionBlocked:
            raise
        except Exception as exc:
            logger.warning("[ENRICH] Failed to enrich %s: %s", design.slug, exc)
            return design, True
        self.stats.enriched += 1
        if self.stats.enriched % 10 == 0:
            logger.info("[ENRICH] Enriched %d items...", self.stats.enriched)
        return enriched, False

    async def enrich_all(self, designs: List[DesignRecord], existing: Dict[str, DesignRecord]) -> List[DesignRecord]:
        """Bounded batches with staggered starts, then failed items retried one at a time."""
        results: List[DesignRecord] = list(designs)
        failed: List[int] = []
        size = self.settings.batch_size
        logger.info("[ENRICH] Found %d designs, enriching in batches of %d", len(designs), size)

        for start in range(0, len(designs), size):
            batch = designs[start:start + size]
            outcomes = await asyncio.gather(*(
                self._enrich_one(design, i, existing) for i, design in enumerate(batch)
            ))
            for offset, (design, did_fail) in enumerate(outcomes):
                if did_fail:
                    failed.append(start + offset)
                else:
                    results[start + offset] = design
            await self.pacer.pause(self.settings.batch_delay_ms)

        if failed:
            logger.info("[ENRICH] Retrying %d failed enrichments one at a time...", len(failed))
        for index in failed:
            design = designs[index]
            await self.pacer.pause(self.settings.batch_delay_ms * 2)
            try:
                logger.info("[ENRICH]   Retrying %s...", design.slug)
                results[index] = await self.enricher.enrich(design)
                self.stats.enriched += 1
                self.stats.retried_ok += 1
            except SessionBlocked:
                raise
            except Exception as exc:
                logger.warning("[ENRICH]   Retry failed for %s: %s", design.slug, exc)
                self.stats.failed += 1
                results[index] = existing.get(design.slug, design)
        if failed:
            logger.info("[ENRICH] Retry phase complete: %d/%d succeeded", self.stats.retried_ok, len(failed))
        return results

    async def run(self) -> CatalogSnapshot:
        settings = self.settings
        enabled = settings.enabled_categories()
        logger.info("[INGEST] Categories to process: %s", ", ".join(enabled) or "(none)")

        previous = load_snapshot(settings.output_path)
        previous_groups = group_previous_entries(previous)
        existing = designs_from_entries(previous_groups)
        existing = {slug: d for slug, d in existing.items() if is_complete(d)}
        if previous is None:
            logger.info("[INGEST] No existing catalog found, starting fresh")
        else:
            logger.info("[INGEST] Loaded %d existing designs from catalog", len(existing))

        await self.warmup.ensure_warm()
        designs = await self.discover(set(existing))
        designs = await self.enrich_all(designs, existing)

        merged = merge_catalog(designs, previous_groups)
        self.stats.preserved = merged.preserved
        self.stats.dropped = merged.dropped
        self.stats.entries = len(merged.entries)

        snapshot = CatalogSnapshot(store=settings.store, designs=merged.entries)
        write_snapshot(snapshot, settings.output_path)
        self.log_summary(merged.designs_expanded)
        return snapshot

    def log_summary(self, designs_expanded: int) -> None:
        s = self.stats
        logger.info("[INGEST] Final Summary:")
        logger.info("[INGEST]    - Designs crawled this run: %d", s.discovered)
        logger.info("[INGEST]    - New: %d, category updates: %d", s.new, s.updated)
        logger.info("[INGEST]    - Newly enriched: %d (failed: %d)", s.enriched, s.failed)
        logger.info("[INGEST]    - Skipped (already in catalog): %d", s.skipped)
        logger.info("[INGEST]    - Preserved from previous catalog: %d", s.preserved)
        logger.info("[INGEST]    - Total designs before expansion: %d", designs_expanded + s.preserved)
        logger.info("[INGEST]    - Total product cards after expansion: %d", s.entries)


async def run_ingest(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> CatalogSnapshot:
    async with build_client(settings, transport) as client:
        return await IngestJob(settings, client).run()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        settings = get_settings()
    except RuntimeError as exc:
        logger.error("[INGEST] %s", exc)
        return 1
    if not settings.enabled_categories():
        logger.warning("[INGEST] No categories enabled via INGEST_CATEGORIES; nothing to do.")
        return 0
    try:
        asyncio.run(run_ingest(settings))
    except SessionBlocked as exc:
        logger.error("[INGEST] Aborting job: %s. Try again later or reduce the schedule frequency.", exc)
        return 1
    except Exception:
        logger.exception("[INGEST] Ingestion failed; previous snapshot left untouched")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
