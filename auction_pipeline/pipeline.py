# auction_pipeline/pipeline.py
"""Wiring for the pipeline components that share a session factory and upstream client."""
from .cache import SalesCache
from .collection import Collector
from .db import SessionLocal
from .processor import AdaptiveBatchProcessor
from .scheduler import CollectionScheduler
from .services import SearchService
from .targeted import TargetedCollector
from .upstream import AuctionAPIClient


class Pipeline:

    def __init__(self, session_factory=None, client=None, collector=None, processor=None, **scheduler_kwargs):
        self.session_factory = session_factory or SessionLocal
        self.client = client or AuctionAPIClient()
        self.collector = collector or Collector(self.session_factory, self.client)
        self.cache = SalesCache(self.session_factory)
        self.search = SearchService(self.cache, self.client)
        self.targeted = TargetedCollector(self.collector)
        self.scheduler = CollectionScheduler(self.session_factory, self.client, collector=self.collector,
                                             **scheduler_kwargs)
        self.processor = processor or AdaptiveBatchProcessor(self.session_factory)
