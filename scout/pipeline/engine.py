"""
Engine wiring — one store and one provider client shared by every component.

Components receive their collaborators through constructors; tests build an
Engine around an in-memory store and a fake provider.
"""
from dataclasses import dataclass
from typing import Optional

from scout.pipeline.enrichment import EnrichmentOrchestrator
from scout.pipeline.feed import FeedAggregator
from scout.pipeline.manager import RunController
from scout.pipeline.reset import ResetResult, factory_reset
from scout.pipeline.sync import ItemSynchronizer
from scout.pipeline.webhook import WebhookIngestor


@dataclass
class Engine:
    store: object
    provider: object
    feed: FeedAggregator
    synchronizer: ItemSynchronizer
    orchestrator: EnrichmentOrchestrator
    runs: RunController
    webhooks: WebhookIngestor
    webhook_secret: Optional[str] = None

    def reset(self, **kwargs) -> ResetResult:
        return factory_reset(self.store, self.provider, self.feed, **kwargs)


def build_engine(store, provider, webhook_secret: Optional[str] = None,
                 webhook_url: Optional[str] = None, feed_scan_limit: Optional[int] = None) -> Engine:
    feed = FeedAggregator(store) if feed_scan_limit is None else FeedAggregator(store, feed_scan_limit)
    synchronizer = ItemSynchronizer(store, provider)
    orchestrator = EnrichmentOrchestrator(store, provider, synchronizer, feed)
    runs = RunController(store, provider, synchronizer, feed, webhook_url=webhook_url)
    webhooks = WebhookIngestor(store, synchronizer, orchestrator, feed)
    return Engine(
        store=store,
        provider=provider,
        feed=feed,
        synchronizer=synchronizer,
        orchestrator=orchestrator,
        runs=runs,
        webhooks=webhooks,
        webhook_secret=webhook_secret,
    )
