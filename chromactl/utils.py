import re
import uuid
from datetime import datetime, timezone


def now_iso() -> str:
    """UTC timestamp like '2025-11-06T09:12:34.123456Z'."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def format_eta(seconds: float) -> str:
    """
    Render a remaining-time estimate as 'MM:SS', or 'H:MM:SS' past an hour.
    """
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


_UNSAFE = re.compile(r"[^a-z0-9_]", re.IGNORECASE)


def artifact_name(prefix: str, summary: str) -> str:
    """Filesystem-safe '<prefix>_<summary>.png' name for a generated image."""
    opts = _UNSAFE.sub("", summary.replace(", ", "_"))[:100]
    head = re.sub(r"[^a-z0-9]", "_", prefix, flags=re.IGNORECASE)
    return f"{head}_{opts}.png"


def find_prefix(ids, prefix: str):
    """Resolve an abbreviated id. Ambiguous prefixes raise ValueError."""
    matches = [i for i in ids if i.startswith(prefix)]
    if prefix in matches:
        return prefix
    if len(matches) > 1:
        raise ValueError(f"Id prefix '{prefix}' is ambiguous ({len(matches)} matches).")
    return matches[0] if matches else None
