"""Shared utility functions for the statement pipeline."""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import colorlog
from pydantic import BaseModel


T = TypeVar("T")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with a colorized format for the project."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger


logger = get_logger("statement-pipeline.retry")


def ensure_dir(path: str | Path) -> None:
    """Ensure a directory exists (like mkdir -p)."""
    Path(path).mkdir(parents=True, exist_ok=True)


def utcnow() -> datetime:
    """Get the current UTC time as an aware datetime."""
    return datetime.now(UTC)


class RetryPolicy(BaseModel):
    """Bounded retry: ``max_attempts`` calls in total, delays of base, 2*base, 4*base..."""

    max_attempts: int
    base_delay: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * (2 ** (attempt - 1))


def _always(_: Exception) -> bool:
    return True


def retry_with_backoff(
    operation: Callable[[int], T],
    policy: RetryPolicy,
    *,
    should_retry: Callable[[Exception], bool] = _always,
    is_acceptable: Callable[[T], bool] | None = None,
    score: Callable[[T], float] | None = None,
    label: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation(attempt)`` with exponential backoff.

    An attempt is retried when it raises an exception accepted by ``should_retry`` or when its
    result fails ``is_acceptable``. If every attempt returns an unacceptable result, the best one
    by ``score`` (or the latest, without a score) is returned. If no attempt produced a result the
    last exception is re-raised.
    """
    best: T | None = None
    have_result = False
    last_exc: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = operation(attempt)
        except Exception as exc:
            if not should_retry(exc):
                raise
            last_exc = exc
            logger.warning(f"[Retry] {label} attempt {attempt}/{policy.max_attempts} failed: {exc}")
        else:
            if not have_result or score is None or score(result) > score(best):
                best = result
                have_result = True
            if is_acceptable is None or is_acceptable(result):
                return result
            logger.warning(f"[Retry] {label} attempt {attempt}/{policy.max_attempts} returned an unacceptable result")
        if attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            if delay > 0:
                sleep(delay)
    if have_result:
        return best
    if last_exc is None:
        msg = f"{label}: no attempts were made"
        raise RuntimeError(msg)
    raise last_exc
