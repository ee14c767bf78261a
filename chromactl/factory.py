import logging
from typing import List

from .errors import InvariantViolation
from .models import Job, OptionSet
from .permutations import expand
from .prompts import compose

logger = logging.getLogger(__name__)


def create_jobs(source_id: str, option_set: OptionSet) -> List[Job]:
    """One QUEUED job per combination, all sharing a single options snapshot."""
    snapshot = option_set.snapshot()
    combos = expand(snapshot)
    if not combos:
        raise InvariantViolation(f"Option expansion produced no combinations for source {source_id}")

    jobs = []
    for combo in combos:
        composed = compose(combo)
        jobs.append(Job(
            source_id=source_id,
            prompt=composed.instructions,
            summary=composed.summary,
            options=snapshot,
            aspect_ratio=combo.get("aspect_ratio"),
            variant=combo.variant,
        ))
    logger.debug("Created %d job(s) for source %s", len(jobs), source_id)
    return jobs
