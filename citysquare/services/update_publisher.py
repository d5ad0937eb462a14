import asyncio
import inspect
import logging
import os
import ssl
from dataclasses import asdict
from typing import Any, Callable, List, Optional

import aiohttp
import certifi

from citysquare.models.content import NewsUpdated


Subscriber = Callable[[NewsUpdated], Any]


class UpdatePublisher:
    """
    Outbound "news updated" channel for presentation layers.

    Subscribers may be plain or async callables. An optional webhook receives
    each event as JSON. Delivery failures are logged and never reach the crawler.
    """

    def __init__(self, webhook_url: Optional[str] = None):
        self.webhook_url = webhook_url if webhook_url is not None else os.getenv("NEWS_WEBHOOK_URL")
        self._subscribers: List[Subscriber] = []
        self.timeout = aiohttp.ClientTimeout(total=10)
        self.logger = logging.getLogger(__name__)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def publish(self, event: NewsUpdated) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:  # noqa: BLE001
                self.logger.error(f"❌ News update subscriber failed: {e}", exc_info=True)

        if self.webhook_url:
            await self._post_webhook(event)

    async def _post_webhook(self, event: NewsUpdated) -> None:
        payload = {"type": "NEWS_DB_UPDATED", **asdict(event)}
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        try:
            async with aiohttp.ClientSession(
                timeout=self.timeout,
                connector=aiohttp.TCPConnector(ssl=ssl_context),
            ) as session:
                async with session.post(self.webhook_url, json=payload) as response:
                    if response.status >= 300:
                        self.logger.warning(f"⚠️ Update webhook returned HTTP {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"⚠️ Update webhook failed: {e}")
