"""
Retry logic with exponential backoff and jitter.

Used while bootstrapping the RPC connection: msfrpcd can take a while to
start listening after the daemon itself comes up.
"""

from __future__ import annotations
import random
import time
import functools
import logging
from typing import Callable, Any, Optional, Tuple, Type

logger = logging.getLogger('sploit.retry')


def exponential_backoff_retry(
    max_attempts: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 30.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for exponential backoff retry with jitter.

    Args:
        max_attempts: Maximum attempts including the first call (default: 5)
        base_delay: Initial delay in seconds (default: 0.5)
        max_delay: Maximum delay cap in seconds (default: 30)
        backoff_factor: Exponential growth factor (default: 2.0)
        jitter: Randomize each delay between 0 and its computed value
        exceptions: Tuple of exceptions that trigger a retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Sleep function, replaceable in tests

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0

            while True:
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(
                            f"Function {func.__name__} succeeded after {attempt} retries"
                        )
                    return result

                except exceptions as exc:
                    attempt += 1

                    if attempt >= max_attempts:
                        logger.error(
                            f"Max retries ({max_attempts}) exceeded for {func.__name__}: {exc}"
                        )
                        raise

                    # base_delay * (backoff_factor ** (attempt - 1)), capped
                    delay = base_delay * (backoff_factor ** (attempt - 1))
                    delay = min(delay, max_delay)
                    if jitter:
                        delay = random.uniform(0, delay)

                    logger.warning(
                        f"Retry {attempt}/{max_attempts} for {func.__name__} "
                        f"after {delay:.2f}s delay: {exc}"
                    )

                    if on_retry:
                        try:
                            on_retry(attempt, exc, delay)
                        except Exception as callback_exc:
                            logger.error(f"Retry callback failed: {callback_exc}")

                    sleep(delay)

        return wrapper
    return decorator


class RetryPolicy:
    """
    Configurable retry policy.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=60.0)

        @policy.retry()
        def connect():
            ...
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        exceptions: Tuple[Type[Exception], ...] = (Exception,)
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.exceptions = exceptions

    def retry(self, on_retry: Optional[Callable] = None, sleep: Callable[[float], None] = time.sleep):
        """Apply this policy as a decorator."""
        return exponential_backoff_retry(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_factor=self.backoff_factor,
            jitter=self.jitter,
            exceptions=self.exceptions,
            on_retry=on_retry,
            sleep=sleep,
        )


# Waiting for msfrpcd to bind its port; about six minutes in total
RPC_STARTUP_POLICY = RetryPolicy(
    max_attempts=40,
    base_delay=1.0,
    max_delay=10.0,
    backoff_factor=1.5,
    jitter=False,
    exceptions=(OSError,),
)
