from dataclasses import dataclass
from typing import Optional

from .errors import error_message
from .models import POLICY, TRANSIENT, FailedItem, Settings

# Case-insensitive substrings that mark a moderation rejection.
POLICY_VOCABULARY = ("prohibited", "safety", "blocked", "moderation", "content policy")


@dataclass(frozen=True)
class Classification:
    category: str

    @property
    def is_policy_rejection(self) -> bool:
        return self.category == POLICY


def classify(error) -> Classification:
    """Anything whose message does not read like a policy rejection is transient."""
    text = error if isinstance(error, str) else error_message(error)
    lowered = (text or "").lower()
    if any(term in lowered for term in POLICY_VOCABULARY):
        return Classification(POLICY)
    return Classification(TRANSIENT)


def ceiling_for(category: str, settings: Settings) -> int:
    if category == POLICY:
        return settings.max_policy_retries
    return settings.max_transient_retries


def is_blocked(item: FailedItem, settings: Settings) -> bool:
    return item.retry_count >= ceiling_for(item.category, settings)


def is_retryable(item: FailedItem, settings: Settings, category: Optional[str] = None) -> bool:
    if category is not None and item.category != category:
        return False
    return not is_blocked(item, settings)
