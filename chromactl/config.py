DEFAULT_CONFIG = {
    "concurrency": "3",
    "max_transient_retries": "3",
    "max_policy_retries": "1",
    "timeout_seconds": "120",
    "generator_attempts": "3",
    "backoff_base": "2",
}

# Inclusive bounds; out-of-range values are clamped, not rejected.
CONFIG_BOUNDS = {
    "concurrency": (1, 10),
    "max_transient_retries": (1, 10),
    "max_policy_retries": (0, 5),
    "timeout_seconds": (5, 3600),
    "generator_attempts": (1, 5),
    "backoff_base": (0, 10),
}

ALLOWED_CONFIG_KEYS = set(DEFAULT_CONFIG.keys())


def clamp_config_value(key: str, value) -> int:
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer.")
    lo, hi = CONFIG_BOUNDS[key]
    return max(lo, min(hi, n))
