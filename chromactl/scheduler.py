import logging
import threading
import time
from collections import deque
from itertools import count
from pathlib import Path
from typing import Mapping, Optional

from . import events as ev
from .classifier import classify
from .errors import InvariantViolation, UnknownError, error_message
from .jobqueue import JobQueue
from .models import FailedItem, Job, Result, Settings, Source
from .stores import FailedStore, ResultStore
from .utils import artifact_name

logger = logging.getLogger(__name__)

DURATION_WINDOW = 20
DEFAULT_DURATION = 15.0


class Scheduler:
    """
    Runs queued jobs against a generator with at most ``settings.concurrency``
    calls in flight.

    A single coordinator thread admits jobs head first while active and
    under the cap; each admitted job runs on its own worker thread. Every
    outcome is applied under the queue lock in one step: the job leaves the
    queue and its Result or FailedItem is recorded together. Generation
    errors never escape a worker; they become FailedItems.

    The scheduler deactivates itself once the queue drains. ``stop()`` only
    halts admission; in-flight calls run to completion.
    """

    def __init__(self, queue: JobQueue, generator, failed: FailedStore, results: ResultStore,
                 settings: Optional[Settings] = None, events: Optional[ev.EventChannel] = None,
                 sources: Optional[Mapping[str, Source]] = None):
        self.queue = queue
        self.generator = generator
        self.failed = failed
        self.results = results
        self.settings = settings or Settings()
        self.events = events or ev.EventChannel()
        self.sources = sources if sources is not None else {}
        self.error: Optional[InvariantViolation] = None

        self._active = False
        self._looping = False
        self._coordinator: Optional[threading.Thread] = None
        self._workers = set()
        self._durations = deque(maxlen=DURATION_WINDOW)
        self._names = count(1)

    # ---------- Control ----------
    @property
    def is_active(self) -> bool:
        with self.queue.lock:
            return self._active

    def update_settings(self, settings: Settings):
        with self.queue.lock:
            self.settings = settings
            self.queue.lock.notify_all()

    def start(self):
        with self.queue.lock:
            if self._active:
                return
            self._active = True
            self.error = None
            if self._looping:
                self.queue.lock.notify_all()
            else:
                self._looping = True
                self._coordinator = threading.Thread(target=self._loop, name="scheduler", daemon=True)
                self._coordinator.start()
        self.events.publish(ev.INFO, "Processing started", queued=self.queue.queued_count())

    def stop(self):
        with self.queue.lock:
            if not self._active:
                return
            self._active = False
            self.queue.lock.notify_all()
        self.events.publish(ev.INFO, "Processing paused", in_flight=self.queue.processing_count())

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the coordinator and every worker have exited."""
        deadline = None if timeout is None else time.monotonic() + timeout
        coordinator = self._coordinator
        if coordinator is not None:
            coordinator.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if coordinator.is_alive():
                return False
        with self.queue.lock:
            workers = list(self._workers)
        for t in workers:
            t.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if t.is_alive():
                return False
        return True

    def run(self):
        """Process until the queue drains (or stop() is called)."""
        self.start()
        self.wait()
        if self.error is not None:
            raise self.error

    # ---------- Coordinator ----------
    def _loop(self):
        lock = self.queue.lock
        drained = False
        with lock:
            while True:
                while self._active and self.queue.processing_count() < self.settings.concurrency:
                    job = self.queue.dequeue_next_eligible()
                    if job is None:
                        break
                    self._launch(job)
                if self._active and self.queue.is_idle():
                    self._active = False
                    drained = True
                if not self._active and self.queue.processing_count() == 0:
                    self._looping = False
                    break
                lock.wait()
        if drained:
            self.events.publish(ev.DRAINED, "All jobs finished")

    def _launch(self, job: Job):
        t = threading.Thread(target=self._execute, args=(job,),
                             name=f"worker-{next(self._names)}", daemon=True)
        self._workers.add(t)
        t.start()

    # ---------- Workers ----------
    def _execute(self, job: Job):
        self.events.publish(ev.JOB_STARTED, "Job started", job_id=job.id, summary=job.summary)
        started = time.monotonic()
        artifact, failure = None, None
        try:
            source = self.sources.get(job.source_id)
            if source is None:
                raise UnknownError(f"Source image missing: {job.source_id}")
            hints = {
                "aspect_ratio": job.aspect_ratio,
                "filename": artifact_name(Path(source.name).stem, job.summary),
            }
            artifact = self.generator.generate(source, job.prompt, hints)
        except Exception as e:
            failure = e
        duration = time.monotonic() - started

        try:
            try:
                kind, title, details = self._settle(job, artifact, failure, duration)
            except InvariantViolation as e:
                logger.error("Aborting batch: %s", e)
                with self.queue.lock:
                    self.error = e
                    self._active = False
                kind, title, details = ev.ERROR, "Queue invariant violated", {"job_id": job.id, "error": str(e)}
            self.events.publish(kind, title, **details)
        finally:
            with self.queue.lock:
                self._workers.discard(threading.current_thread())
                self.queue.lock.notify_all()

    def _settle(self, job: Job, artifact, failure, duration: float):
        with self.queue.lock:
            if not self.queue.finish(job.id):
                return ev.JOB_DISCARDED, "Job removed while in flight; outcome dropped", {"job_id": job.id}

            if failure is None:
                self.results.append(Result(
                    source_id=job.source_id,
                    prompt=job.prompt,
                    summary=job.summary,
                    artifact=str(artifact),
                    duration=duration,
                    variant=job.variant,
                ))
                self._durations.append(duration)
                return ev.JOB_SUCCEEDED, "Job completed", {
                    "job_id": job.id, "summary": job.summary, "artifact": str(artifact),
                }

            message = error_message(failure)
            verdict = classify(message)
            item = FailedItem(job=job, error=message, category=verdict.category,
                              retry_count=job.retry_count + 1)
            self.failed.add(item)
            return ev.JOB_FAILED, "Job failed", {
                "job_id": job.id, "category": verdict.category,
                "retry_count": item.retry_count, "error": message,
            }

    # ---------- Estimates ----------
    def seed_durations(self, durations):
        """Prime the ETA window, e.g. with durations of earlier results."""
        with self.queue.lock:
            self._durations.extend(d for d in durations if d > 0)

    def average_duration(self) -> float:
        with self.queue.lock:
            if not self._durations:
                return DEFAULT_DURATION
            return sum(self._durations) / len(self._durations)

    def eta_seconds(self) -> float:
        return self.average_duration() * (self.queue.queued_count() + self.queue.processing_count())
