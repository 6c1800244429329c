import asyncio, random
from typing import Awaitable, Callable, Optional

MIN_DELAY_MS = 500


class Pacer:
    """
    Owns every politeness delay of a run so tests can swap the clock out.
    Delays are in milliseconds; `sleep` receives seconds like asyncio.sleep.
    """

    def __init__(
        self,
        jitter_factor: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.jitter_factor = jitter_factor
        self.sleep = sleep
        self.rng = rng or random.Random()

    def jittered(self, base_ms: float) -> int:
        jitter = base_ms * self.jitter_factor * (self.rng.random() * 2 - 1)
        return max(MIN_DELAY_MS, round(base_ms + jitter))

    def backoff(self, attempt: int, initial_ms: int, max_ms: int) -> int:
        return self.jittered(min(initial_ms * (2 ** attempt), max_ms))

    async def wait(self, ms: float) -> None:
        if ms > 0:
            await self.sleep(ms / 1000)

    async def pause(self, base_ms: float) -> int:
        ms = self.jittered(base_ms)
        await self.wait(ms)
        return ms
