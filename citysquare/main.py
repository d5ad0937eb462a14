#!/usr/bin/env python3
import os
import sys
import asyncio
import logging
import signal
from typing import Dict, Any, Optional
from dataclasses import dataclass
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

from citysquare.pipeline.crawler import NewsCrawler
from citysquare.pipeline.scheduler import BatchSweep, Scheduler
from citysquare.services.ai_service import AIService
from citysquare.services.blob_storage import BlobStorage
from citysquare.services.category_resolver import CategoryResolver
from citysquare.services.config_service import ConfigService
from citysquare.services.content_fetcher import ContentFetcher
from citysquare.services.deduplication_service import DeduplicationService
from citysquare.services.image_service import ImageService
from citysquare.services.news_store import NewsStore
from citysquare.services.retention_service import RetentionEnforcer
from citysquare.services.search_gateway import SearchGateway
from citysquare.services.summarization_service import SummarizationService
from citysquare.services.update_publisher import UpdatePublisher
from citysquare.utils.logging_config import setup_logging


@dataclass
class CrawlerConfig:
    """Process configuration"""
    # API keys
    gemini_api_key: str
    google_search_api_key: str
    google_search_cx: str

    # Blob storage
    supabase_url: str = ""
    supabase_key: str = ""
    storage_bucket: str = "urbanhub_assets"

    # Paths
    database_path: str = "data/citysquare.db"
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Behaviour
    tick_seconds: float = 60.0
    fetch_concurrency: int = 5
    search_max_results: int = 20
    content_char_budget: int = 8000
    image_generation: bool = True
    webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        gemini_key = os.getenv('GEMINI_API_KEY', '')
        return cls(
            gemini_api_key=gemini_key,
            google_search_api_key=os.getenv('GOOGLE_SEARCH_API_KEY', '') or gemini_key,
            google_search_cx=os.getenv('GOOGLE_SEARCH_CX', ''),
            supabase_url=os.getenv('SUPABASE_URL', ''),
            supabase_key=os.getenv('SUPABASE_KEY', ''),
            storage_bucket=os.getenv('STORAGE_BUCKET', 'urbanhub_assets'),
            database_path=os.getenv('DATABASE_PATH', 'data/citysquare.db'),
            log_dir=os.getenv('LOG_DIR', 'logs'),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            tick_seconds=float(os.getenv('TICK_SECONDS', '60')),
            fetch_concurrency=int(os.getenv('FETCH_CONCURRENCY', '5')),
            search_max_results=int(os.getenv('SEARCH_MAX_RESULTS', '20')),
            content_char_budget=int(os.getenv('CONTENT_CHAR_BUDGET', '8000')),
            image_generation=(os.getenv('IMAGE_GENERATION', 'true').lower() == 'true'),
            webhook_url=os.getenv('NEWS_WEBHOOK_URL') or None,
        )


class CrawlerApp:
    """
    Wires the crawler services together and owns the process lifecycle.
    """

    def __init__(self, config: Optional[CrawlerConfig] = None):
        self.config = config or CrawlerConfig.from_env()
        self.services: Dict[str, Any] = {}
        self.logger = logging.getLogger(__name__)
        self.scheduler: Optional[Scheduler] = None

    async def initialize_services(self) -> Dict[str, Any]:
        cfg = self.config
        if not cfg.gemini_api_key:
            raise CrawlerAppError("Missing GEMINI_API_KEY")

        Path(cfg.database_path).parent.mkdir(parents=True, exist_ok=True)

        config_service = ConfigService(db_path=cfg.database_path)
        await config_service.initialize_db()
        store = NewsStore(db_path=cfg.database_path)
        await store.initialize_db()

        resolver = CategoryResolver()
        storage = BlobStorage(cfg.supabase_url, cfg.supabase_key, cfg.storage_bucket)
        retention = RetentionEnforcer(store, config_service, storage, resolver)
        store.add_save_hook(retention.enforce)

        ai = AIService(api_key=cfg.gemini_api_key)
        fetcher = ContentFetcher(concurrency=cfg.fetch_concurrency)
        search = SearchGateway(cfg.google_search_api_key, cfg.google_search_cx, cfg.search_max_results)
        summarizer = SummarizationService(ai, fetcher, single_article_chars=cfg.content_char_budget)
        images = ImageService(ai, storage, generation_enabled=cfg.image_generation)
        publisher = UpdatePublisher(webhook_url=cfg.webhook_url or "")

        crawler = NewsCrawler(
            store=store,
            config_service=config_service,
            search=search,
            summarizer=summarizer,
            images=images,
            fetcher=fetcher,
            resolver=resolver,
            dedup=DeduplicationService(store),
            publisher=publisher,
        )

        self.services = {
            'config': config_service,
            'store': store,
            'storage': storage,
            'retention': retention,
            'ai': ai,
            'fetcher': fetcher,
            'search': search,
            'summarization': summarizer,
            'images': images,
            'publisher': publisher,
            'crawler': crawler,
        }
        return self.services

    async def close(self) -> None:
        for name in ('fetcher', 'search', 'storage'):
            svc = self.services.get(name)
            if svc is not None:
                await svc.close_session()

    def _handle_shutdown(self, signum, frame) -> None:  # noqa: ANN001
        if self.scheduler:
            self.scheduler.stop()

    async def run_scheduler(self) -> None:
        crawler = self.services['crawler']
        self.scheduler = Scheduler(crawler, self.services['config'], tick_seconds=self.config.tick_seconds)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.scheduler.stop)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                signal.signal(sig, self._handle_shutdown)
        await self.scheduler.init()

    async def health_check(self) -> Dict[str, bool]:
        results: Dict[str, bool] = {}
        results['ai'] = await self.services['ai'].test_connection()
        try:
            await self.services['store'].get_last_update_time('Local')
            results['store'] = True
        except Exception:  # noqa: BLE001
            results['store'] = False
        results['search'] = bool(self.config.google_search_api_key and self.config.google_search_cx)
        results['storage'] = self.services['storage'].configured
        return results


class CrawlerAppError(Exception):
    """Raised when the crawler process cannot start"""
    pass


async def main():
    """Main entry point"""
    import argparse
    parser = argparse.ArgumentParser(description="CitySquare news crawler")
    parser.add_argument('--once', metavar='CATEGORY', help='Run one category now if its refresh interval has passed')
    parser.add_argument('--context', help='City or place name for the Local category')
    parser.add_argument('--force', action='store_true', help='With --once, ignore the refresh interval')
    parser.add_argument('--sweep', action='store_true', help='Backfill every city and category once')
    parser.add_argument('--delay', type=float, default=30.0, help='Seconds between sweep calls (default: 30)')
    parser.add_argument('--insert', metavar='URL', help='Manually insert one article URL')
    parser.add_argument('--category', help='Target category for --insert')
    parser.add_argument('--health', action='store_true', help='Health check only')
    parser.add_argument('--log-level', default=None, help='Override LOG_LEVEL')
    args = parser.parse_args()

    config = CrawlerConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(log_level=config.log_level, log_dir=config.log_dir)

    app = CrawlerApp(config)
    try:
        await app.initialize_services()
        crawler: NewsCrawler = app.services['crawler']

        if args.health:
            health = await app.health_check()
            print("Service Health Status:")
            for service, status in health.items():
                print(f"  {service}: {'✅' if status else '❌'}")
            if not all(health.values()):
                sys.exit(1)
        elif args.insert:
            if not args.category:
                parser.error("--insert requires --category")
            item = await crawler.insert_url(args.insert, args.category, args.context)
            print(f"✅ Inserted {item.id}: {item.title}" if item else "⚠️ Nothing inserted")
        elif args.sweep:
            sweep = BatchSweep(crawler, app.services['config'], delay_seconds=args.delay)
            reports = await sweep.sweep()
            for report in reports:
                label = f"{report.category} ({report.context})" if report.context else report.category
                status = f"❌ {report.error}" if report.error else f"✅ {report.saved} new"
                print(f"  {label}: {status}")
        elif args.once:
            if args.force:
                result = await crawler.force_refresh(args.once, args.context)
            else:
                result = await crawler.run_if_stale(args.once, args.context)
            if result is None:
                print(f"{args.once} is up to date, nothing to do")
            else:
                print(f"{result.effective_category}: {result.saved} new items"
                      + (f" (stopped at {result.stopped_at})" if result.stopped_at else ""))
        else:
            print("Starting news crawler scheduler...")
            await app.run_scheduler()
    except KeyboardInterrupt:
        print("\n⚠️ Shutting down gracefully...")
    except Exception as e:  # noqa: BLE001
        print(f"❌ Fatal error: {e}")
        logging.exception("Fatal error in main")
        sys.exit(1)
    finally:
        await app.close()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
