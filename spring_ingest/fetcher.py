import logging, random, time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from fake_useragent import UserAgent

from .config import Settings
from .pacing import Pacer
from .warmup import WarmupController

logger = logging.getLogger(__name__)

FALLBACK_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]


class FetchError(Exception):
    def __init__(self, message: str, url: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


def is_retryable(status: int) -> bool:
    return status in (403, 429) or 500 <= status < 600


def cache_bust(url: str) -> str:
    return str(httpx.URL(url).copy_set_param("_cb", str(int(time.time() * 1000))))


class BrowserHeaders:
    """Randomized, realistic header sets. User agents come from fake-useragent."""

    def __init__(self, user_agent: Optional[Callable[[], str]] = None):
        if user_agent is None:
            ua = UserAgent(fallback=random.choice(FALLBACK_USER_AGENTS))
            user_agent = lambda: ua.random
        self.user_agent = user_agent

    def __call__(self, url: str, navigate: bool = True) -> Dict[str, str]:
        parsed = urlparse(url)
        headers = {
            "User-Agent": self.user_agent(),
            "Accept": (
                "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8"
                if navigate else "application/json, text/plain, */*"
            ),
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
            "Sec-Ch-Ua-Mobile": "?0",
            "Sec-Ch-Ua-Platform": '"Windows"',
            "Sec-Fetch-Dest": "document" if navigate else "empty",
            "Sec-Fetch-Mode": "navigate" if navigate else "cors",
            "Sec-Fetch-Site": "same-origin",
            "Referer": f"{parsed.scheme}://{parsed.netloc}/",
        }
        if navigate:
            headers["Sec-Fetch-User"] = "?1"
            headers["Upgrade-Insecure-Requests"] = "1"
        return headers


class Fetcher:
    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        warmup: WarmupController,
        pacer: Pacer,
        headers: Optional[BrowserHeaders] = None,
    ):
        self.settings = settings
        self.client = client
        self.warmup = warmup
        self.pacer = pacer
        self.headers = headers or BrowserHeaders()

    async def _get(self, url: str, navigate: bool) -> httpx.Response:
        await self.warmup.ensure_warm()
        attempt = 0
        retries = self.settings.max_retries
        while True:
            try:
                res = await self.client.get(cache_bust(url), headers=self.headers(url, navigate))
            except httpx.TransportError as exc:
                if attempt >= retries:
                    raise FetchError(f"Network error after {retries} retries: {url} - {exc}", url) from exc
                wait = await self._backoff(attempt)
                logger.warning("[FETCH] Network error (%s), waited %.1fs before retry %d/%d", type(exc).__name__, wait / 1000, attempt + 1, retries)
                attempt += 1
                continue
            except httpx.RequestError as exc:
                # Redirect loops and undecodable bodies will not heal on retry.
                raise FetchError(f"{type(exc).__name__} for {url}: {exc}", url) from exc

            if is_retryable(res.status_code):
                if attempt >= retries:
                    raise FetchError(f"HTTP {res.status_code} after {retries} retries: {url}", url, res.status_code)
                wait = await self._backoff(attempt)
                logger.warning("[FETCH] HTTP %s, waited %.1fs before retry %d/%d", res.status_code, wait / 1000, attempt + 1, retries)
                attempt += 1
                continue
            return res

    async def _backoff(self, attempt: int) -> int:
        ms = self.pacer.backoff(attempt, self.settings.initial_retry_delay_ms, self.settings.max_retry_delay_ms)
        await self.pacer.wait(ms)
        return ms

    async def fetch_markup(self, url: str) -> str:
        """GET a page. Raises FetchError when it cannot be had."""
        res = await self._get(url, navigate=True)
        if not res.is_success:
            raise FetchError(f"Failed to fetch {url}: {res.status_code}", url, res.status_code)
        return res.text

    async def fetch_structured(self, url: str) -> Optional[Any]:
        """GET a JSON document; every failure degrades to None."""
        try:
            res = await self._get(url, navigate=False)
        except FetchError as exc:
            logger.warning("[FETCH] Giving up on %s: %s", url, exc)
            return None
        if not res.is_success:
            return None
        try:
            return res.json()
        except ValueError:
            logger.warning("[FETCH] Non-JSON body from %s", url)
            return None


def build_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=settings.request_timeout_s,
        transport=transport,
    )
