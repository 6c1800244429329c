import asyncio

import httpx
import pytest

from conftest import HEADERS, listing_page
from spring_ingest import ingest
from spring_ingest.ingest import IngestJob
from spring_ingest.merger import expand_design
from spring_ingest.schema import CatalogSnapshot, DesignRecord, VariantRecord
from spring_ingest.store import gz_path_for, load_snapshot, write_snapshot
from spring_ingest.warmup import SessionBlocked


def next_data(build_id):
    return f'<script id="__NEXT_DATA__" type="application/json">{{"buildId":"{build_id}","props":{{}}}}</script>'


def product(pid, product_type, price, image=None):
    prod = {"id": pid, "productType": product_type, "price": price}
    if image:
        prod["images"] = [{"src": image}]
    return {"pageProps": {"storeListing": {"primaryProduct": prod}}}


def run_job(settings, site, pacer, action=None):
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(site.handler)) as client:
            job = IngestJob(settings, client, pacer=pacer, headers=HEADERS)
            result = await (action(job) if action else job.run())
            return job, result
    return asyncio.run(go())


def previous_catalog(settings, slug, product_type="Tee"):
    design = DesignRecord(
        slug=slug,
        title=slug.replace("-", " ").title(),
        hero_image=f"https://cdn.test/{slug}.png",
        variants=[VariantRecord(
            product_id="7", label=product_type, image=f"https://cdn.test/{slug}.png",
            checkout_url=f"https://shop.test/listing/{slug}?product=7", product_type=product_type,
        )],
    )
    snapshot = CatalogSnapshot(store="test-store", generated_at="2026-01-01T00:00:00.000Z", designs=expand_design(design))
    write_snapshot(snapshot, settings.output_path)
    return snapshot


def test_end_to_end_run(settings, site, pacer):
    settings = settings.model_copy(update={"batch_size": 2})
    site.html("/Drinkware", listing_page("mug-a", "mug-a?product=99"))
    site.html("/listing/mug-a", next_data("b1"))
    site.json("/_next/data/b1/listing/mug-a/default.json",
              product(1565, "Mug", "$14.99", "https://cdn.test/mug-a.png"))
    site.html("/listing/mug-a?product=99", next_data("b99"))
    site.json("/_next/data/b99/listing/mug-a/default.json", product(99, "Travel Mug", "$19.99"))

    job, snapshot = run_job(settings, site, pacer)

    assert [e.slug for e in snapshot.designs] == ["mug-a-mug", "mug-a-99-travel-mug"]
    assert job.stats.discovered == 2
    assert job.stats.enriched == 2

    stored = load_snapshot(settings.output_path)
    assert gz_path_for(settings.output_path).exists()
    assert stored.store == "test-store"
    mug = stored.designs[0]
    assert mug.title == "Mug A - Mug"
    assert mug.category == "drinkware"
    assert mug.design_slug == "mug-a"
    assert mug.hero_image == "https://cdn.test/mug-a.png"
    (variant,) = mug.variants
    assert variant.price == "$14.99"
    assert variant.image == "https://cdn.test/mug-a.png"
    assert variant.checkout_url == "https://shop.test/listing/mug-a?product=1565"
    assert stored.designs[1].variants[0].checkout_url == "https://shop.test/listing/mug-a?product=99"


def test_category_outage_preserves_previous_catalog(settings, site, pacer):
    previous = previous_catalog(settings, "old-design")
    site.add("/Drinkware", (500, ""))

    _, snapshot = run_job(settings, site, pacer)

    assert [e.to_wire() for e in snapshot.designs] == [e.to_wire() for e in previous.designs]
    assert snapshot.generated_at != previous.generated_at
    assert load_snapshot(settings.output_path).designs[0].slug == "old-design-tee"


def test_known_designs_are_not_re_enriched(settings, site, pacer):
    previous_catalog(settings, "mug-a", "Mug")
    site.html("/Drinkware", listing_page("tee-b", "mug-a"))
    site.html("/listing/tee-b", "<html><body>no variants here</body></html>")

    job, snapshot = run_job(settings, site, pacer)

    assert site.hits("/listing/mug-a") == 0
    assert [e.slug for e in snapshot.designs] == ["tee-b-unknown-product", "mug-a-mug"]
    assert job.stats.preserved == 1


def test_failed_enrichment_is_retried_then_dropped(settings, site, pacer):
    site.html("/Drinkware", listing_page("tee-c", "mug-d"))
    site.html("/listing/mug-d", "<html></html>")

    job, snapshot = run_job(settings, site, pacer)

    assert site.hits("/listing/tee-c") == 2
    assert job.stats.failed == 1
    assert job.stats.dropped == 1
    assert [e.slug for e in snapshot.designs] == ["mug-d-unknown-product"]


def test_specific_category_retags_designs_found_under_all(settings, site, pacer):
    settings = settings.model_copy(update={"categories": ["all", "drinkware"]})
    site.html("/", listing_page("mug-a"))
    site.html("/Drinkware", listing_page("mug-a"))

    job, designs = run_job(settings, site, pacer, lambda j: j.discover(set()))

    assert [(d.slug, d.category) for d in designs] == [("mug-a", "drinkware")]
    assert job.stats.updated == 1


def test_blocked_session_aborts_without_writing(settings, site, pacer):
    site.add("/", (403, ""))
    with pytest.raises(SessionBlocked):
        run_job(settings, site, pacer)
    assert not settings.output_path.exists()


def test_main_exit_codes(settings, monkeypatch):
    async def blocked(_settings):
        raise SessionBlocked(429)

    monkeypatch.setattr(ingest, "get_settings", lambda: settings)
    monkeypatch.setattr(ingest, "run_ingest", blocked)
    assert ingest.main() == 1

    monkeypatch.setattr(ingest, "get_settings", lambda: settings.model_copy(update={"categories": []}))
    assert ingest.main() == 0
