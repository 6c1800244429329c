import asyncio, logging
from enum import Enum
from typing import Callable, Dict

import httpx

from .config import Settings
from .pacing import Pacer

logger = logging.getLogger(__name__)

BLOCK_STATUSES = (403, 429)
PROGRESS_EVERY_MS = 30_000


class WarmupState(str, Enum):
    COLD = "cold"
    STARTUP_DELAY = "startup_delay"
    WARMING = "warming"
    WARM = "warm"
    BLOCKED = "blocked"


class SessionBlocked(Exception):
    """The origin refused the warm-up visit. The whole run must stop."""

    def __init__(self, status: int):
        super().__init__(f"Rate limited ({status}) on warmup request")
        self.status = status


class WarmupController:
    """
    One-time session warm-up: long startup delay, then a homepage visit.
    Once WARM every call is a no-op. A 403/429 on the visit is fatal.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        pacer: Pacer,
        headers_for: Callable[[str, bool], Dict[str, str]],
    ):
        self.settings = settings
        self.client = client
        self.pacer = pacer
        self.headers_for = headers_for
        self.state = WarmupState.COLD
        self._lock = asyncio.Lock()

    @property
    def is_warm(self) -> bool:
        return self.state == WarmupState.WARM

    async def ensure_warm(self) -> None:
        if self.state == WarmupState.WARM:
            return
        async with self._lock:
            if self.state == WarmupState.WARM:
                return
            if self.state == WarmupState.BLOCKED:
                raise SessionBlocked(0)
            await self._startup_delay()
            await self._visit_homepage()

    async def _startup_delay(self) -> None:
        self.state = WarmupState.STARTUP_DELAY
        extra = self.pacer.rng.random() * self.settings.startup_jitter_ms
        total = self.settings.startup_delay_ms + extra
        logger.info(
            "[WARMUP] Waiting %.0fs (%.0fs base + %.0fs jitter) before any requests...",
            total / 1000, self.settings.startup_delay_ms / 1000, extra / 1000,
        )
        remaining = total
        while remaining > 0:
            chunk = min(PROGRESS_EVERY_MS, remaining)
            await self.pacer.wait(chunk)
            remaining -= chunk
            if remaining > 0:
                logger.info("[WARMUP]   %.0fs remaining...", remaining / 1000)
        logger.info("[WARMUP] Startup delay complete")

    async def _visit_homepage(self) -> None:
        self.state = WarmupState.WARMING
        url = self.settings.base_url
        waited = await self.pacer.pause(self.settings.warmup_delay_ms)
        logger.info("[WARMUP] Visiting %s after %.1fs", url, waited / 1000)
        try:
            res = await self.client.get(url, headers=self.headers_for(url, True))
        except httpx.HTTPError as exc:
            logger.warning("[WARMUP] Network error (%s), proceeding with caution...", exc)
            await self.pacer.pause(10_000)
            self.state = WarmupState.WARM
            return

        if res.is_success:
            logger.info("[WARMUP] Session warm-up successful")
            await self.pacer.pause(3_000)
            self.state = WarmupState.WARM
        elif res.status_code in BLOCK_STATUSES:
            self.state = WarmupState.BLOCKED
            logger.error("[WARMUP] FATAL: rate limited (%s) on warmup request; the site is blocking us.", res.status_code)
            raise SessionBlocked(res.status_code)
        else:
            logger.warning("[WARMUP] Homepage returned %s, proceeding with caution...", res.status_code)
            await self.pacer.pause(8_000)
            self.state = WarmupState.WARM
