import random

import httpx
import pytest

from spring_ingest.config import Settings
from spring_ingest.fetcher import BrowserHeaders, Fetcher
from spring_ingest.pacing import Pacer
from spring_ingest.warmup import WarmupController

BASE_URL = "https://shop.test"


class FakeSite:
    """
    Routes keyed by path + query (cache-buster removed). Each route holds a
    queue of responses; the last one repeats. Unknown routes answer 404.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.raw = []

    def add(self, key, *responses):
        self.routes[key] = list(responses)
        return self

    def html(self, key, body, status=200):
        return self.add(key, (status, body))

    def json(self, key, obj, status=200):
        return self.add(key, (status, obj))

    def hits(self, key):
        return self.requests.count(key)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.raw.append(request)
        url = request.url.copy_remove_param("_cb")
        query = url.query.decode()
        key = url.path + (f"?{query}" if query else "")
        self.requests.append(key)
        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(404, text="not found")
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        status, body = reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


HEADERS = BrowserHeaders(user_agent=lambda: "pytest-agent")


@pytest.fixture
def site():
    s = FakeSite()
    s.html("/", "<html><body>home</body></html>")
    return s


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def pacer(sleeper):
    return Pacer(0.3, sleep=sleeper, rng=random.Random(7))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        base_url=BASE_URL,
        store="test-store",
        output_path=tmp_path / "data" / "catalog.json",
        max_retries=2,
        startup_delay_ms=0,
        startup_jitter_ms=0,
        early_stop_threshold=3,
        max_category_pages=20,
        categories="drinkware",
    )


@pytest.fixture
def make_fetcher(site, pacer):
    def _make(settings):
        client = httpx.AsyncClient(transport=httpx.MockTransport(site.handler))
        warmup = WarmupController(settings, client, pacer, HEADERS)
        return Fetcher(settings, client, warmup, pacer, HEADERS)
    return _make


def card(slug, image="/img/{slug}.png", title=None):
    img = image.format(slug=slug.split("?")[0])
    heading = f"<h3>{title}</h3>" if title else ""
    return f'<a href="/listing/{slug}"><img src="{img}">{heading}</a>'


def listing_page(*slugs):
    return "<html><body>" + "".join(card(s) for s in slugs) + "</body></html>"
