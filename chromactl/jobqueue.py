import logging
import threading
from typing import Dict, Iterable, Iterator, List, Optional, Set

from .errors import InvariantViolation
from .models import PROCESSING, QUEUED, Job

logger = logging.getLogger(__name__)

UP = "up"
DOWN = "down"
TOP = "top"
BOTTOM = "bottom"
DIRECTIONS = (UP, DOWN, TOP, BOTTOM)


class JobQueue:
    """
    Ordered collection of unfinished jobs (QUEUED or PROCESSING).

    One total order, processed head first. All mutations happen under
    ``lock``, a Condition that is notified on every change; the scheduler
    waits on it and takes it to apply compound updates atomically.

    A PROCESSING job that gets removed is "withdrawn": it leaves the
    ordering at once but keeps its concurrency slot until ``finish`` is
    called for it, and ``finish`` then reports its outcome as discarded.
    """

    def __init__(self, jobs: Optional[Iterable[Job]] = None):
        self.lock = threading.Condition(threading.RLock())
        self._jobs: List[Job] = []
        self._withdrawn: Dict[str, Job] = {}
        if jobs:
            self.enqueue(jobs)

    # ---------- Internals ----------
    def _index(self, job_id: str) -> Optional[int]:
        for i, job in enumerate(self._jobs):
            if job.id == job_id:
                return i
        return None

    def _check_new(self, jobs: List[Job]):
        known = {j.id for j in self._jobs} | set(self._withdrawn)
        for job in jobs:
            if job.id in known:
                raise ValueError(f"Job '{job.id}' is already queued.")
            known.add(job.id)

    # ---------- Insertion ----------
    def enqueue(self, jobs: Iterable[Job]) -> int:
        jobs = list(jobs)
        with self.lock:
            self._check_new(jobs)
            self._jobs.extend(jobs)
            self.lock.notify_all()
        return len(jobs)

    def enqueue_front(self, jobs: Iterable[Job]) -> int:
        jobs = list(jobs)
        with self.lock:
            self._check_new(jobs)
            self._jobs[0:0] = jobs
            self.lock.notify_all()
        return len(jobs)

    # ---------- Scheduling ----------
    def dequeue_next_eligible(self) -> Optional[Job]:
        """Mark the head-most QUEUED job PROCESSING and return it."""
        with self.lock:
            for job in self._jobs:
                if job.status == QUEUED:
                    job.status = PROCESSING
                    self.lock.notify_all()
                    return job
            return None

    def finish(self, job_id: str) -> bool:
        """
        Release a PROCESSING job after its call resolved. Returns False when
        the job was withdrawn meanwhile and its outcome must be dropped.
        """
        with self.lock:
            if self._withdrawn.pop(job_id, None) is not None:
                self.lock.notify_all()
                return False
            idx = self._index(job_id)
            if idx is None or self._jobs[idx].status != PROCESSING:
                raise InvariantViolation(f"Job '{job_id}' finished but was not in flight")
            del self._jobs[idx]
            self.lock.notify_all()
            return True

    def requeue_processing(self) -> int:
        """Reset jobs left PROCESSING by an interrupted run."""
        n = 0
        with self.lock:
            for job in self._jobs:
                if job.status == PROCESSING:
                    job.status = QUEUED
                    n += 1
            if n:
                self.lock.notify_all()
        return n

    # ---------- Removal ----------
    def _drop_at(self, idx: int) -> Job:
        job = self._jobs.pop(idx)
        if job.status == PROCESSING:
            self._withdrawn[job.id] = job
        return job

    def remove(self, job_id: str) -> bool:
        with self.lock:
            idx = self._index(job_id)
            if idx is None:
                return False
            self._drop_at(idx)
            self.lock.notify_all()
            return True

    def remove_source(self, source_id: str) -> int:
        with self.lock:
            doomed = [i for i, j in enumerate(self._jobs) if j.source_id == source_id]
            for idx in reversed(doomed):
                self._drop_at(idx)
            if doomed:
                self.lock.notify_all()
            return len(doomed)

    def clear(self) -> int:
        with self.lock:
            n = len(self._jobs)
            for idx in reversed(range(n)):
                self._drop_at(idx)
            self.lock.notify_all()
            return n

    # ---------- Ordering ----------
    def reorder(self, job_id: str, direction: str) -> bool:
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of: {', '.join(DIRECTIONS)}")
        with self.lock:
            idx = self._index(job_id)
            if idx is None:
                return False
            job = self._jobs.pop(idx)
            if direction == TOP:
                target = 0
            elif direction == BOTTOM:
                target = len(self._jobs)
            elif direction == UP:
                target = max(0, idx - 1)
            else:
                target = min(len(self._jobs), idx + 1)
            self._jobs.insert(target, job)
            self.lock.notify_all()
            return True

    def promote(self, job_ids: Iterable[str]) -> int:
        """Splice the given jobs to the front, keeping their relative order."""
        wanted = set(job_ids)
        with self.lock:
            front = [j for j in self._jobs if j.id in wanted]
            rest = [j for j in self._jobs if j.id not in wanted]
            self._jobs = front + rest
            if front:
                self.lock.notify_all()
            return len(front)

    def promote_source(self, source_id: str) -> int:
        with self.lock:
            return self.promote([j.id for j in self._jobs if j.source_id == source_id])

    # ---------- Queries ----------
    def get(self, job_id: str) -> Optional[Job]:
        with self.lock:
            idx = self._index(job_id)
            return self._jobs[idx] if idx is not None else None

    def snapshot(self) -> List[Job]:
        with self.lock:
            return list(self._jobs)

    def __iter__(self) -> Iterator[Job]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self.lock:
            return len(self._jobs)

    def queued_count(self) -> int:
        with self.lock:
            return sum(1 for j in self._jobs if j.status == QUEUED)

    def processing_count(self) -> int:
        with self.lock:
            return sum(1 for j in self._jobs if j.status == PROCESSING) + len(self._withdrawn)

    def is_idle(self) -> bool:
        with self.lock:
            return not self._jobs and not self._withdrawn

    def signatures(self) -> Set[str]:
        with self.lock:
            return {j.signature for j in self._jobs}

    def counts(self) -> Dict[str, int]:
        with self.lock:
            return {
                "queued": self.queued_count(),
                "processing": self.processing_count(),
            }
