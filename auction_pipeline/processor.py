# auction_pipeline/processor.py
"""Adaptive batch processor for analytical passes over the sales corpus.

Large requests are processed under a memory budget. The strategy depends on
the requested row count and the process's current memory utilization:

    rows >= 50,000 or memory > 0.85   streaming: fetch and process windows of
                                      max(5,000, rows // 20), GC hint whenever
                                      memory is over the threshold again
    rows >= 15,000                    chunked: fetch once, process 5,000-row chunks
    otherwise                         direct: fetch once, one chunk

Partial results are merged as they arrive; average prices are combined with a
weighted running average, never a mean of per-batch means.
"""
import gc
import threading
import time
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import List, Optional

import psutil

from . import config, crud
from .errors import CancelledError, NoDataError
from .result_cache import AnalysisResultCache, result_key
from .schemas import AnalysisDepth, AnalysisResponse
from .utils import get_logger, is_cancelled

logger = get_logger(__name__)

STREAMING_THRESHOLD = 50000
CHUNKED_THRESHOLD = 15000
MIN_BATCH_SIZE = 5000
TOP_MAKES = 5
MAX_OPPORTUNITIES_PER_CHUNK = 3
MIN_GROUP_SIZE = 3
ESTIMATED_MARGIN = 0.15
STREAMING_SAMPLE = 100
BATCH_SAMPLE = 500


class Strategy(str, Enum):
    STREAMING = "streaming"
    CHUNKED = "chunked"
    DIRECT = "direct"


@dataclass
class StrategyPlan:
    strategy: Strategy
    batch_size: int


def select_strategy(requested_rows, memory_ratio, threshold=config.ANALYSIS_MEMORY_THRESHOLD):
    if requested_rows >= STREAMING_THRESHOLD or memory_ratio > threshold:
        return StrategyPlan(Strategy.STREAMING, max(MIN_BATCH_SIZE, requested_rows // 20))
    if requested_rows >= CHUNKED_THRESHOLD:
        return StrategyPlan(Strategy.CHUNKED, MIN_BATCH_SIZE)
    return StrategyPlan(Strategy.DIRECT, requested_rows)


def memory_utilization(budget_mb=None):
    """Current memory pressure as a fraction of what is available.

    With an explicit budget (`ANALYSIS_MEMORY_BUDGET_MB`), this process's resident
    memory against that budget; otherwise system-wide memory in use.
    """
    budget_mb = config.ANALYSIS_MEMORY_BUDGET_MB if budget_mb is None else budget_mb
    if budget_mb > 0:
        return psutil.Process().memory_info().rss / (budget_mb * 1024 * 1024)
    return psutil.virtual_memory().percent / 100


def _price(value):
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


@dataclass
class BatchSummary:
    """Statistics for one chunk, or several merged chunks."""
    total_records: int = 0
    priced_records: Optional[int] = None
    avg_price: float = 0.0
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    make_counts: Counter = field(default_factory=Counter)
    opportunities: List[dict] = field(default_factory=list)
    market_trends: List[dict] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def weight(self):
        # weight of this summary's average price
        return self.total_records if self.priced_records is None else self.priced_records

    def overview(self):
        return {
            "total_records": self.total_records,
            "avg_price": round(self.avg_price, 2),
            "price_range": {"min": self.min_price or 0, "max": self.max_price or 0},
            "top_makes": [make for make, _ in self.make_counts.most_common(TOP_MAKES)],
        }


def _avg(values):
    return sum(values) / len(values) if values else 0.0


def summarize_chunk(rows) -> BatchSummary:
    prices = [p for p in (_price(r.get("purchase_price")) for r in rows) if p is not None]
    makes = Counter(r.get("make") for r in rows if r.get("make"))
    summary = BatchSummary(
        total_records=len(rows),
        priced_records=len(prices),
        avg_price=_avg(prices),
        min_price=min(prices) if prices else None,
        max_price=max(prices) if prices else None,
        make_counts=makes,
    )

    by_make = defaultdict(list)
    by_year = defaultdict(list)
    for r in rows:
        by_make[r.get("make") or "unknown"].append(r)
        price = _price(r.get("purchase_price"))
        if r.get("year") and price is not None:
            by_year[r["year"]].append(price)

    groups = sorted(by_make.items(), key=lambda kv: len(kv[1]), reverse=True)
    for make, records in groups:
        if len(summary.opportunities) >= MAX_OPPORTUNITIES_PER_CHUNK or len(records) < MIN_GROUP_SIZE:
            break
        avg_price = _avg([p for p in (_price(r.get("purchase_price")) for r in records) if p is not None])
        if not avg_price:
            continue
        summary.opportunities.append({
            "category": "vehicle_segment",
            "title": f"{make} Market Opportunity",
            "description": f"{len(records)} {make} vehicles at ${round(avg_price)} average",
            "confidence": round(min(0.9, 0.6 + len(records) / 50), 3),
            "potential_profit": round(avg_price * ESTIMATED_MARGIN),
            "risk_level": "Low" if len(records) > 10 else "Medium",
            "actionable_steps": [
                f"Target {make} vehicles in ${round(avg_price * 0.9)}-${round(avg_price * 1.1)} range"
            ],
        })

    for year, prices_for_year in sorted(by_year.items(), key=lambda kv: len(kv[1]), reverse=True)[:3]:
        if len(prices_for_year) >= MIN_GROUP_SIZE:
            summary.market_trends.append({
                "year": year, "avg_price": round(_avg(prices_for_year), 2), "count": len(prices_for_year),
            })
    summary.recommendations.append(f"Focus on {len(by_make)} available makes")
    return summary


def merge_summaries(acc: BatchSummary, part: BatchSummary) -> BatchSummary:
    """Fold `part` into `acc` in place and return `acc`."""
    weight = acc.weight + part.weight
    if weight:
        acc.avg_price = (acc.avg_price * acc.weight + part.avg_price * part.weight) / weight
    acc.priced_records = weight
    acc.total_records += part.total_records
    mins = [p for p in (acc.min_price, part.min_price) if p is not None]
    maxs = [p for p in (acc.max_price, part.max_price) if p is not None]
    acc.min_price = min(mins) if mins else None
    acc.max_price = max(maxs) if maxs else None
    acc.make_counts.update(part.make_counts)
    acc.opportunities.extend(part.opportunities)
    acc.market_trends.extend(part.market_trends)
    acc.recommendations.extend(part.recommendations)
    return acc


def analysis_row(record):
    return {
        "lot_id": record.lot_id,
        "site": record.site,
        "make": record.make,
        "model": record.model,
        "year": record.year,
        "purchase_price": record.purchase_price,
        "sale_date": record.sale_date,
    }


class LoggingLearningSink:
    """Default incremental-learning collaborator: records how many rows it was offered."""

    def process_incremental(self, rows):
        logger.debug("Learning sink received %d rows", len(rows))


@dataclass
class ProcessingMetrics:
    total_records: int = 0
    processed_batches: int = 0
    average_batch_ms: float = 0.0
    total_processing_ms: float = 0.0
    memory_ratio: float = 0.0


class AdaptiveBatchProcessor:

    def __init__(self, session_factory, result_cache=None, learning_sink=None,
                 memory_probe=memory_utilization, threshold=config.ANALYSIS_MEMORY_THRESHOLD):
        self.session_factory = session_factory
        self.result_cache = result_cache or AnalysisResultCache()
        self.learning_sink = learning_sink or LoggingLearningSink()
        self.memory_probe = memory_probe
        self.threshold = threshold
        self.metrics = ProcessingMetrics()
        self._metrics_lock = threading.Lock()

    def process(self, caller_id, depth, requested_rows, filters, cancel=None) -> AnalysisResponse:
        started = time.perf_counter()
        depth = AnalysisDepth(depth)
        key = result_key(caller_id, depth, filters, requested_rows)
        hit = self.result_cache.get(key)
        if hit is not None:
            logger.info("Cache hit - returning cached result for %s analysis", depth.value)
            return AnalysisResponse(data=hit.results, cached=True,
                                    processing_time_ms=int((time.perf_counter() - started) * 1000),
                                    strategy=hit.results.get("strategy"))

        plan = select_strategy(requested_rows, self.memory_probe(), self.threshold)
        logger.info("Processing %d records with %s strategy (%s analysis)",
                    requested_rows, plan.strategy.value, depth.value)
        if plan.strategy is Strategy.STREAMING:
            summary, sample, batches = self._stream(requested_rows, filters, plan.batch_size, cancel)
        else:
            summary, sample, batches = self._fetch_and_chunk(requested_rows, filters, plan.batch_size, cancel)

        data = {
            "overview": summary.overview(),
            "opportunities": summary.opportunities,
            "market_trends": summary.market_trends,
            "recommendations": summary.recommendations,
            "strategy": plan.strategy.value,
            "batch_count": batches,
        }
        self.result_cache.put(key, data, comprehensive=depth is AnalysisDepth.COMPREHENSIVE)
        if sample:
            self.learning_sink.process_incremental(sample)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        with self._metrics_lock:
            self.metrics.total_processing_ms += elapsed_ms
        return AnalysisResponse(data=data, cached=False, processing_time_ms=elapsed_ms,
                                strategy=plan.strategy.value)

    def _fetch(self, filters, limit, offset):
        with self.session_factory() as db:
            return [analysis_row(r) for r in crud.analysis_slice(db, filters, limit, offset)]

    def _run_batch(self, rows):
        started = time.perf_counter()
        summary = summarize_chunk(rows)
        self._record_batch(len(rows), (time.perf_counter() - started) * 1000)
        return summary

    def _stream(self, requested_rows, filters, batch_size, cancel):
        acc = BatchSummary(priced_records=0)
        sample = []
        offset = 0
        batches = 0
        while offset < requested_rows:
            if is_cancelled(cancel):
                raise CancelledError(f"streaming analysis cancelled after {offset} records")
            rows = self._fetch(filters, min(batch_size, requested_rows - offset), offset)
            if not rows:
                break
            merge_summaries(acc, self._run_batch(rows))
            sample.extend(rows[:STREAMING_SAMPLE])
            offset += len(rows)
            batches += 1
            del rows
            if self.memory_probe() > self.threshold:
                logger.info("Memory threshold reached, forcing garbage collection")
                gc.collect()
        if acc.total_records == 0:
            raise NoDataError("No data available for analysis")
        return acc, sample, batches

    def _fetch_and_chunk(self, requested_rows, filters, chunk_size, cancel):
        rows = self._fetch(filters, requested_rows, 0)
        if not rows:
            raise NoDataError("No data available for analysis")
        acc = BatchSummary(priced_records=0)
        batches = 0
        for start in range(0, len(rows), chunk_size):
            if is_cancelled(cancel):
                raise CancelledError(f"batch analysis cancelled after {start} records")
            merge_summaries(acc, self._run_batch(rows[start:start + chunk_size]))
            batches += 1
        return acc, rows[:BATCH_SAMPLE], batches

    def _record_batch(self, size, elapsed_ms):
        with self._metrics_lock:
            m = self.metrics
            m.total_records += size
            m.processed_batches += 1
            m.average_batch_ms = (m.average_batch_ms * (m.processed_batches - 1) + elapsed_ms) / m.processed_batches
            m.memory_ratio = self.memory_probe()

    def statistics(self):
        with self._metrics_lock:
            processing = asdict(self.metrics)
        return {
            "processing": processing,
            "cache": self.result_cache.stats(),
            "memory": {"usage": round(self.memory_probe(), 4)},
        }

