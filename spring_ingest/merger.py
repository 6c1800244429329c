import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .normalizer import categorize_product_type, normalize_title, product_type_suffix
from .schema import CatalogSnapshot, DesignRecord, ExpandedProductEntry

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT_TYPE = "Unknown Product"


@dataclass
class MergeResult:
    entries: List[ExpandedProductEntry]
    designs_expanded: int
    preserved: int
    dropped: int


def is_complete(design: Optional[DesignRecord]) -> bool:
    return bool(design and design.slug and design.title and design.variants)


def expand_design(design: DesignRecord) -> List[ExpandedProductEntry]:
    """One catalog entry per distinct product type, in first-seen order."""
    groups: "OrderedDict[str, list]" = OrderedDict()
    for variant in design.variants:
        groups.setdefault(variant.product_type or UNKNOWN_PRODUCT_TYPE, []).append(variant)

    entries = []
    for product_type, variants in groups.items():
        entries.append(ExpandedProductEntry(
            slug=f"{design.slug}-{product_type_suffix(product_type)}",
            title=f"{design.title} - {product_type}",
            category=categorize_product_type(product_type),
            hero_image=variants[0].image or design.hero_image,
            variants=variants,
            last_indexed=design.last_indexed,
            design_slug=design.slug,
            design_title=design.title,
            product_type=product_type,
        ))
    return entries


def group_previous_entries(snapshot: Optional[CatalogSnapshot]) -> "OrderedDict[str, List[ExpandedProductEntry]]":
    groups: "OrderedDict[str, List[ExpandedProductEntry]]" = OrderedDict()
    if snapshot is None:
        return groups
    for entry in snapshot.designs:
        if entry.slug and entry.variants:
            groups.setdefault(entry.source_slug(), []).append(entry)
    return groups


def designs_from_entries(groups: Dict[str, List[ExpandedProductEntry]]) -> Dict[str, DesignRecord]:
    """Rebuild the known-design lookup (by design slug) from expanded entries."""
    designs = {}
    for slug, entries in groups.items():
        first = entries[0]
        designs[slug] = DesignRecord(
            slug=slug,
            title=first.design_title or first.title,
            category=first.category,
            hero_image=first.hero_image,
            variants=[v for e in entries for v in e.variants],
            last_indexed=first.last_indexed,
        )
    return designs


def merge_catalog(
    run_designs: Iterable[Optional[DesignRecord]],
    previous: Dict[str, List[ExpandedProductEntry]],
) -> MergeResult:
    """
    This run's designs first, expanded per product type; then every previous
    entry whose design this run did not produce, carried over unchanged.
    """
    entries: List[ExpandedProductEntry] = []
    produced: Set[str] = set()
    entry_slugs: Set[str] = set()
    expanded = dropped = preserved = 0

    for design in run_designs:
        if not is_complete(design):
            dropped += 1
            continue
        design = design.model_copy(update={"title": normalize_title(design.title, design.slug)})
        produced.add(design.slug)
        expanded += 1
        for entry in expand_design(design):
            if entry.slug not in entry_slugs:
                entry_slugs.add(entry.slug)
                entries.append(entry)

    for design_slug, old_entries in previous.items():
        if design_slug in produced:
            continue
        kept = False
        for entry in old_entries:
            if entry.slug not in entry_slugs:
                entry_slugs.add(entry.slug)
                entries.append(entry)
                kept = True
        preserved += kept

    if dropped:
        logger.warning("[MERGE] Filtered out %d incomplete designs", dropped)
    if preserved:
        logger.info("[MERGE] Preserved %d existing designs that weren't produced this run", preserved)
    logger.info("[MERGE] Expanded %d designs into %d product cards", expanded, len(entries))
    return MergeResult(entries=entries, designs_expanded=expanded, preserved=preserved, dropped=dropped)
