"""
Retry utilities using tenacity.

Only read-only venue queries are retried. Calls that move funds are never
wrapped here: a retried write could apply twice.
"""
import logging
from typing import Any, Callable, TypeVar, Tuple, Optional

from tenacity import (
    retry as tenacity_retry,
    stop_after_attempt,
    stop_after_delay,
    stop_any,
    wait_exponential,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log,
)

from hedgecraft.errors import VenueUnavailableError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class RetryConfig:
    """Configuration for retry behavior."""
    
    def __init__(
        self,
        max_attempts: int = 3,
        max_delay_seconds: Optional[float] = None,
        wait_strategy: str = "exponential",  # "exponential" or "fixed"
        wait_min: float = 0.2,
        wait_max: float = 5.0,
        wait_fixed_seconds: float = 1.0,
        retry_exceptions: Tuple[type, ...] = (VenueUnavailableError,),
        log_before_sleep: bool = True,
    ):
        self.max_attempts = max_attempts
        self.max_delay_seconds = max_delay_seconds
        self.wait_strategy = wait_strategy
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.wait_fixed_seconds = wait_fixed_seconds
        self.retry_exceptions = retry_exceptions
        self.log_before_sleep = log_before_sleep


def _get_stop_condition(config: RetryConfig):
    """Build stop condition from config."""
    stops = [stop_after_attempt(config.max_attempts)]
    if config.max_delay_seconds:
        stops.append(stop_after_delay(config.max_delay_seconds))
    return stop_any(*stops)


def _get_wait_strategy(config: RetryConfig):
    """Build wait strategy from config."""
    if config.wait_strategy == "fixed":
        return wait_fixed(config.wait_fixed_seconds)
    return wait_exponential(
        multiplier=1,
        min=config.wait_min,
        max=config.wait_max,
    )


def retry_with_config(config: RetryConfig) -> Callable[[F], F]:
    """
    Retry decorator using a RetryConfig object.
    
    Works for both sync and async callables; the last exception is
    re-raised once attempts are exhausted.
    
    Example:
        @retry_with_config(VENUE_READ_RETRY)
        async def read_balances(self):
            ...
    """
    def decorator(func: F) -> F:
        retry_decorator = tenacity_retry(
            stop=_get_stop_condition(config),
            wait=_get_wait_strategy(config),
            retry=retry_if_exception_type(config.retry_exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING) if config.log_before_sleep else None,
            reraise=True,
        )
        return retry_decorator(func)
    
    return decorator


# Predefined retry configuration for venue reads (balances, health, quotes)
VENUE_READ_RETRY = RetryConfig(
    max_attempts=3,
    wait_strategy="exponential",
    wait_min=0.2,
    wait_max=2.0,
)


def retry_venue_read(func: F) -> F:
    """Retry configuration for read-only venue queries."""
    return retry_with_config(VENUE_READ_RETRY)(func)
