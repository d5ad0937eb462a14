"""
Staggered round-robin scheduling of crawler runs.

One category is evaluated per tick. The cursor only ever increments, and the
category list is re-read every tick, so custom categories added or removed
at runtime are picked up without resetting the rotation.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple

from citysquare.models.content import NewsCategory
from citysquare.pipeline.crawler import NewsCrawler, RunResult
from citysquare.services.config_service import ConfigService


SweepEntry = Tuple[str, Optional[str]]

SWEEP_CITIES = ["Toronto", "Vancouver", "Montreal", "Calgary", "Edmonton", "Waterloo", "Windsor", "London"]


@dataclass
class TickOutcome:
    cursor: int
    category: Optional[str]
    stale: bool = False
    result: Optional[RunResult] = None
    error: Optional[str] = None


class Scheduler:
    """
    Owns the round-robin cursor and drives ``NewsCrawler`` one category per tick.

    ``clock`` and ``sleep`` are injectable so tests can step the loop
    deterministically.
    """

    def __init__(
        self,
        crawler: NewsCrawler,
        config_service: ConfigService,
        tick_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.crawler = crawler
        self.config_service = config_service
        self.tick_seconds = tick_seconds
        self.clock = clock or time.time
        self._sleep = sleep
        self.cursor = 0
        self.shutdown_event = asyncio.Event()
        self.logger = logging.getLogger(__name__)

    @property
    def image_generation_enabled(self) -> bool:
        return self.crawler.images.generation_enabled

    async def categories(self) -> List[str]:
        config = await self.config_service.get()
        return self.crawler.resolver.scheduled_categories(config.news)

    async def tick(self) -> TickOutcome:
        """Evaluate exactly one category. Errors are contained and reported."""
        cursor = self.cursor
        self.cursor += 1
        outcome = TickOutcome(cursor=cursor, category=None)
        try:
            categories = await self.categories()
            if not categories:
                return outcome
            category = categories[cursor % len(categories)]
            outcome.category = category
            outcome.stale = await self.crawler.should_update(category)
            if outcome.stale:
                outcome.result = await self.crawler.run(category)
        except Exception as e:  # noqa: BLE001
            outcome.error = str(e)
            self.logger.error(f"❌ Scheduler tick {cursor} ({outcome.category or 'category list'}) failed: {e}", exc_info=True)
        return outcome

    async def init(self) -> None:
        """Run the tick loop until ``stop`` is called."""
        self.logger.info(f"📅 News crawler scheduler started (tick every {self.tick_seconds:.0f}s)")
        while not self.shutdown_event.is_set():
            started = self.clock()
            await self.tick()
            remaining = max(0.0, self.tick_seconds - (self.clock() - started))
            await self._wait(remaining)
        self.logger.info("🛑 News crawler scheduler stopped")

    async def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        self.shutdown_event.set()


@dataclass
class SweepReport:
    category: str
    context: Optional[str]
    saved: int = 0
    error: Optional[str] = None


class BatchSweep:
    """
    Backfill across a fixed list of cities and every category, with a long
    pause between calls to stay under upstream rate limits.
    """

    def __init__(
        self,
        crawler: NewsCrawler,
        config_service: ConfigService,
        delay_seconds: float = 30.0,
        cities: Optional[List[str]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.crawler = crawler
        self.config_service = config_service
        self.delay_seconds = delay_seconds
        self.cities = cities if cities is not None else SWEEP_CITIES
        self._sleep = sleep or asyncio.sleep
        self.logger = logging.getLogger(__name__)

    async def entries(self) -> List[SweepEntry]:
        config = await self.config_service.get()
        entries: List[SweepEntry] = [(NewsCategory.LOCAL, city) for city in self.cities]
        entries += [(code, None) for code in NewsCategory.canonical() if code != NewsCategory.LOCAL]
        entries += [(custom.id, None) for custom in config.news.custom_categories]
        return entries

    async def sweep(self) -> List[SweepReport]:
        entries = await self.entries()
        self.logger.info(f"🧹 Starting sweep over {len(entries)} categories")
        reports: List[SweepReport] = []
        for position, (category, context) in enumerate(entries):
            label = f"{category} ({context})" if context else category
            self.logger.info(f"Processing {label}...")
            report = SweepReport(category=category, context=context)
            try:
                result = await self.crawler.run(category, context)
                report.saved = result.saved
                report.error = result.error
            except Exception as e:  # noqa: BLE001
                report.error = str(e)
                self.logger.error(f"❌ Failed to fetch news for {label}: {e}")
            reports.append(report)
            if position < len(entries) - 1 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

        total = sum(r.saved for r in reports)
        self.logger.info(f"✅ Sweep completed: {total} new items across {len(reports)} categories")
        return reports
