"""
Thread-safe rate-limited logging utilities.

Status polls can hit the same transient network failure many times in a
row; this module keeps those repeats from flooding the log while the
first occurrence is still reported.
"""
import logging
import threading
import time
from typing import Optional

from cachetools import TTLCache

# Configure logger
logger = logging.getLogger(__name__)

# Entries older than an hour are dropped whatever their interval
_error_log_cache: TTLCache = TTLCache(maxsize=256, ttl=3600)
_error_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: float = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None
) -> bool:
    """
    Log a message with rate limiting, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between logs with the same key, in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key (defaults to level and message)

    Returns:
        True if the message was logged, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    key = key or f"{level}:{message}"

    with _error_log_cache_lock:
        now = time.monotonic()
        last_time = _error_log_cache.get(key)
        if last_time is not None and now - last_time < interval:
            return False

        log_method(message)
        _error_log_cache[key] = now
        return True


def reset_rate_limits() -> None:
    """Forget every rate-limited key."""
    with _error_log_cache_lock:
        _error_log_cache.clear()
