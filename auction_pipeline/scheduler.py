# auction_pipeline/scheduler.py
"""Background collection scheduler.

Owns a priority queue of per-make collection jobs and works through it one job
at a time: discover the models already seen for the make inside the rolling
window, then collect every model from both sites. The background loop runs on
an APScheduler interval job with a single instance, so jobs never overlap and
the upstream API sees at most one paginating client from here. Manual runs
share a run lock with the loop and are refused while a job is in flight.
"""
import heapq
import itertools
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.exc import SQLAlchemyError

from . import config, crud
from .collection import CollectionStatus, CollectionWindow, Collector, JobResult
from .errors import CollectionBusyError
from .schemas import ALL_SITES
from .utils import get_logger, utcnow

logger = get_logger(__name__)

DEFAULT_MAKE_PRIORITIES = [
    # high-value luxury brands
    ("BMW", 1), ("Mercedes-Benz", 1), ("Audi", 1), ("Tesla", 1), ("Porsche", 1),
    # mainstream
    ("Toyota", 2), ("Honda", 2), ("Ford", 2), ("Chevrolet", 2), ("Nissan", 2),
    ("Hyundai", 2), ("Kia", 2),
    # other major brands
    ("Lexus", 3), ("Jeep", 3), ("Dodge", 3), ("Mazda", 3), ("Volkswagen", 3),
    ("Subaru", 3), ("Mitsubishi", 3), ("Infiniti", 3),
]


class JobState(str, Enum):
    PENDING = "pending"
    MODEL_DISCOVERY = "model_discovery"
    PER_MODEL_COLLECTION = "per_model_collection"


@dataclass
class CollectionJob:
    id: str
    make: str
    priority: int
    model: Optional[str] = None
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    last_collected: Optional[object] = None
    models_discovered: List[str] = field(default_factory=list)
    state: JobState = JobState.PENDING
    last_result: Optional[JobResult] = None

    def sort_key(self):
        # never-collected jobs come before collected ones within a priority tier
        if self.last_collected is None:
            return (self.priority, 0, 0.0)
        return (self.priority, 1, self.last_collected.timestamp())


class CollectionScheduler:

    def __init__(self, session_factory, client, makes=None, collector=None,
                 interval_minutes=config.COLLECTION_INTERVAL_MINUTES,
                 stale_after=timedelta(hours=config.COLLECTION_STALE_HOURS),
                 days_back=config.COLLECTION_DAYS_BACK, max_models=config.MAX_MODELS_PER_MAKE,
                 sites=ALL_SITES, now=utcnow):
        self.session_factory = session_factory
        self.collector = collector or Collector(session_factory, client, now=now)
        self.interval_minutes = interval_minutes
        self.stale_after = stale_after
        self.days_back = days_back
        self.max_models = max_models
        self.sites = tuple(sites)
        self.now = now
        self._seq = itertools.count()
        self._heap = []
        self._jobs = {}
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._cancel = None
        self._background = None
        for index, (make, priority) in enumerate(makes or DEFAULT_MAKE_PRIORITIES):
            job = CollectionJob(id=f"make_{index}_{make}", make=make, priority=priority)
            self._jobs[job.id] = job
            self._push(job)
        logger.info("Data collection queue initialized with %d makes", len(self._jobs))

    def _push(self, job):
        heapq.heappush(self._heap, (job.sort_key(), next(self._seq), job))

    def _is_due(self, job):
        return job.last_collected is None or self.now() - job.last_collected >= self.stale_after

    def _take_due_job(self):
        skipped = []
        found = None
        with self._lock:
            while self._heap:
                entry = heapq.heappop(self._heap)
                if self._is_due(entry[2]):
                    found = entry[2]
                    break
                skipped.append(entry)
            for entry in skipped:
                heapq.heappush(self._heap, entry)
        return found

    def peek_next_job(self):
        """The job `process_next_job` would pick, without taking it."""
        with self._lock:
            for _, _, job in sorted(self._heap, key=lambda e: (e[0], e[1])):
                if self._is_due(job):
                    return job
        return None

    def discover_models(self, make, window):
        """Distinct known models for `make` inside the window; empty on any store error."""
        try:
            with self.session_factory() as db:
                return crud.distinct_models(db, make, window.start, window.end, limit=self.max_models)
        except SQLAlchemyError as e:
            logger.error("Error discovering models for %s: %s", make, e)
            return []

    def process_job(self, job, window=None, cancel=None) -> JobResult:
        window = window or CollectionWindow.rolling(self.days_back, job.year_from, job.year_to, now=self.now())
        logger.info("Processing collection job %s: %s", job.id, window.describe())

        if job.model:
            models = [job.model]
        else:
            job.state = JobState.MODEL_DISCOVERY
            models = self.discover_models(job.make, window)
            job.models_discovered = models
            if models:
                logger.info("Discovered %d models for %s: %s%s", len(models), job.make,
                            ", ".join(models[:5]), "..." if len(models) > 5 else "")
            else:
                logger.info("No known models for %s, collecting without a model filter", job.make)

        job.state = JobState.PER_MODEL_COLLECTION
        try:
            result = self.collector.collect_models(job.make, models, self.sites, window, cancel)
        finally:
            job.state = JobState.PENDING
        job.last_result = result
        if result.status is not CollectionStatus.CANCELLED:
            job.last_collected = self.now()
        logger.info("Completed job %s: %s, collected %d records", job.id, result.status.value,
                    result.records_collected)
        return result

    def process_next_job(self, cancel=None) -> Optional[JobResult]:
        """Run the next due job. Raises `CollectionBusyError` while another job is in flight."""
        if not self._run_lock.acquire(blocking=False):
            raise CollectionBusyError("a collection job is already running")
        try:
            job = self._take_due_job()
            if job is None:
                logger.info("No collection job is due")
                return None
            try:
                return self.process_job(job, cancel=cancel)
            finally:
                with self._lock:
                    self._push(job)
        finally:
            self._run_lock.release()

    def collect_make(self, make, days_back=None, year_from=None, year_to=None, model=None,
                     sites=None, cancel=None) -> JobResult:
        """One-off collection for a make with explicit window/year overrides. Leaves the queue alone."""
        window = CollectionWindow.rolling(self.days_back if days_back is None else days_back,
                                          year_from, year_to, now=self.now())
        if model:
            models = [model]
        else:
            models = self.discover_models(make, window)
        return self.collector.collect_models(make, models, tuple(sites or self.sites), window, cancel)

    # background loop

    @property
    def is_running(self):
        return self._background is not None and self._background.running

    def _tick(self, cancel):
        try:
            self.process_next_job(cancel=cancel)
        except CollectionBusyError:
            logger.info("Skipping scheduled run, a manual job is in progress")
        except Exception as e:
            logger.exception("Error in collection loop: %s", e)

    def start(self):
        if self.is_running:
            logger.info("Data collection already running")
            return False
        # cancel signal for this background run only
        self._cancel = threading.Event()
        self._background = BackgroundScheduler()
        self._background.add_job(self._tick, "interval", args=[self._cancel], minutes=self.interval_minutes,
                                 id="collection", max_instances=1, coalesce=True,
                                 next_run_time=self.now())
        self._background.start()
        logger.info("Started automated data collection every %d minutes", self.interval_minutes)
        return True

    def stop(self):
        if not self.is_running:
            return False
        self._cancel.set()
        self._background.shutdown(wait=False)
        self._background = None
        logger.info("Automated data collection stopped")
        return True

    # reporting

    def status(self):
        jobs = list(self._jobs.values())
        done = sorted((j for j in jobs if j.last_collected), key=lambda j: j.last_collected, reverse=True)
        return {
            "is_running": self.is_running,
            "total_jobs": len(jobs),
            "completed_jobs": len(done),
            "last_collection_times": [
                {"make": j.make, "last_collected": j.last_collected, "models_count": len(j.models_discovered)}
                for j in done[:10]
            ],
        }

    def queue(self):
        return [
            {
                "id": job.id,
                "make": job.make,
                "priority": job.priority,
                "last_collected": job.last_collected,
                "models_discovered": len(job.models_discovered),
                "state": job.state.value,
                "status": "completed" if job.last_collected else "pending",
            }
            for job in sorted(self._jobs.values(), key=CollectionJob.sort_key)
        ]
