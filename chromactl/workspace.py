"""
Everything a session works on: the live options, the source registry, the
job queue and the failure/result stores, plus the intake and retry
operations that touch more than one of them.
"""
import logging
import mimetypes
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import repository
from .classifier import is_blocked
from .events import EventChannel, EventLog, INFO, WARN
from .factory import create_jobs
from .jobqueue import JobQueue
from .models import (
    PROCESSING, SOURCE_COMPLETED, SOURCE_PARTIAL, SOURCE_PROCESSING, SOURCE_QUEUED,
    Job, OptionSet, Settings, Source, default_options,
)
from .scheduler import Scheduler
from .stores import FailedStore, ResultStore

logger = logging.getLogger(__name__)

EVENT_LOG_SIZE = 200


class Workspace:
    def __init__(self, options: Optional[OptionSet] = None, events: Optional[EventChannel] = None):
        self.options = options or default_options()
        self.events = events or EventChannel()
        self.sources: Dict[str, Source] = {}
        self.queue = JobQueue()
        self.failed = FailedStore()
        self.results = ResultStore()
        self.log = EventLog(maxlen=EVENT_LOG_SIZE)
        self.events.subscribe(self.log)

    @property
    def settings(self) -> Settings:
        return self.options.settings

    # ---------- Persistence ----------
    @classmethod
    def load(cls, conn, events: Optional[EventChannel] = None) -> "Workspace":
        ws = cls(options=repository.load_options(conn), events=events)
        jobs, sources = repository.load_state(conn)
        ws.sources = sources
        ws.queue = JobQueue(jobs)
        ws.failed = FailedStore(repository.load_failed(conn))
        ws.results = ResultStore(repository.load_results(conn))
        ws.log.extend(repository.load_events(conn))
        reset = ws.queue.requeue_processing()
        if reset:
            logger.info("Reset %d interrupted job(s) to QUEUED", reset)
        return ws

    def save(self, conn):
        # outcomes settle under the queue lock, so holding it gives one consistent cut
        with self.queue.lock:
            jobs = self.queue.snapshot()
            failed = list(self.failed)
            results = list(self.results)
        repository.save_snapshot(conn, jobs, dict(self.sources), failed, results, self.log.entries())

    # ---------- Intake ----------
    def add_jobs(self, jobs: Iterable[Job], front: bool = False) -> List[Job]:
        """Enqueue jobs, skipping any whose source/options pair already exists."""
        seen = (self.queue.signatures() | self.failed.signatures() | self.results.signatures())
        fresh = []
        for job in jobs:
            if job.signature in seen:
                self.events.publish(WARN, "Skipping duplicate job", signature=job.signature)
                continue
            seen.add(job.signature)
            fresh.append(job)
        if front:
            self.queue.enqueue_front(fresh)
        else:
            self.queue.enqueue(fresh)
        return fresh

    def add_source(self, path: str, options: Optional[OptionSet] = None) -> Tuple[Source, List[Job]]:
        p = Path(path)
        if not p.is_file():
            raise ValueError(f"No such file: {path}")
        mime, _ = mimetypes.guess_type(p.name)
        if not mime or not mime.startswith("image/"):
            raise ValueError(f"Not an image file: {path}")

        snapshot = (options or self.options).snapshot()
        source = Source(name=p.name, path=str(p.resolve()), mime_type=mime, options=snapshot)
        jobs = create_jobs(source.id, snapshot)
        source.total_variations = len(jobs)
        self.sources[source.id] = source
        added = self.add_jobs(jobs)
        self.events.publish(INFO, "Source added", source_id=source.id, name=source.name,
                            variations=len(jobs))
        return source, added

    def add_sources(self, paths: Iterable[str]) -> List[Tuple[Source, List[Job]]]:
        """Add several files under one options snapshot."""
        snapshot = self.options.snapshot()
        return [self.add_source(p, snapshot) for p in paths]

    def remove_source(self, source_id: str) -> bool:
        if self.sources.pop(source_id, None) is None:
            return False
        self.queue.remove_source(source_id)
        self.failed.remove_source(source_id)
        return True

    def rerun_source(self, source_id: str) -> List[Job]:
        """Recreate the source's missing jobs from the snapshot it was added with."""
        source = self.sources.get(source_id)
        if source is None:
            raise ValueError(f"Unknown source: {source_id}")
        self.failed.remove_source(source_id)
        return self.add_jobs(create_jobs(source.id, source.options))

    def prioritize_source(self, source_id: str) -> int:
        return self.queue.promote_source(source_id)

    # ---------- Retry ----------
    def retry(self, item_id: str) -> Job:
        item = self.failed.get(item_id)
        if item is None:
            raise ValueError(f"Failed item {item_id} not found.")
        if is_blocked(item, self.settings):
            raise ValueError(f"Retry limit reached for {item_id} ({item.retry_count} failures).")
        self.failed.take(item_id)
        job = item.job.derive()
        job.retry_count = item.retry_count
        self.queue.enqueue_front([job])
        return job

    def retry_all(self, category: Optional[str] = None) -> List[Job]:
        jobs = []
        for item in self.failed.take_retryable(self.settings, category):
            job = item.job.derive()
            job.retry_count = item.retry_count
            jobs.append(job)
        self.queue.enqueue(jobs)
        return jobs

    # ---------- Progress ----------
    def source_status(self, source_id: str) -> str:
        jobs = [j for j in self.queue if j.source_id == source_id]
        done = len(self.results.for_source(source_id))
        if jobs:
            if done or any(j.status == PROCESSING for j in jobs) or self.failed.for_source(source_id):
                return SOURCE_PROCESSING
            return SOURCE_QUEUED
        if self.failed.for_source(source_id):
            return SOURCE_PARTIAL
        return SOURCE_COMPLETED if done else SOURCE_QUEUED

    def progress(self, source_id: str) -> Tuple[int, int]:
        source = self.sources[source_id]
        return len(self.results.for_source(source_id)), source.total_variations

    def scheduler(self, generator) -> Scheduler:
        sched = Scheduler(
            self.queue, generator, self.failed, self.results,
            settings=self.settings, events=self.events, sources=self.sources,
        )
        # results are newest first; the window keeps the last 20 appended
        sched.seed_durations([r.duration for r in reversed(list(self.results))])
        return sched
