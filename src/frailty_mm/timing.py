"""Timing utilities for performance logging.

Provides a decorator and a context manager that measure how long a fit or
a path run takes and send the duration to the performance log.

Example:
    >>> from frailty_mm.timing import log_execution_time, Timer
    >>>
    >>> @log_execution_time()
    ... def burn_in(data, config):
    ...     ...
    ...
    >>> with Timer(logger, "Regularization path", n_tune=27) as timer:
    ...     result = run_path(data, config)
    >>> timer.duration
    3.41
"""
import time
import functools
import logging
from typing import Callable, Optional

from frailty_mm.logging_config import log_performance


def log_execution_time(logger: Optional[logging.Logger] = None):
    """Decorator to log function execution time.

    Logs a DEBUG message when the function starts and a performance entry
    when it returns. A failure is logged at ERROR level with the elapsed
    time and re-raised.

    Args:
        logger: Logger instance (uses the function's module logger if None)

    Returns:
        Decorated function that logs its execution time

    Example:
        >>> @log_execution_time()
        ... def burn_in(data, config):
        ...     return solve(data, make_frailty("gamma"), maxit=10)
        DEBUG    | Starting: burn_in
        INFO     | Completed: burn_in | duration_sec=0.12
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            log = logger or logging.getLogger(func.__module__)
            start_time = time.perf_counter()
            log.debug(f"Starting: {func.__name__}")

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration = time.perf_counter() - start_time
                log.error(f"{func.__name__} failed after {duration:.2f}s: {e}")
                raise

            duration = time.perf_counter() - start_time
            log_performance(log, f"Completed: {func.__name__}",
                            duration_sec=round(duration, 3))
            return result

        return wrapper
    return decorator


class Timer:
    """Context manager for timing code blocks.

    Measures the duration of a block and logs it as a performance metric
    together with any extra context given at construction.

    Args:
        logger: Logger instance
        description: Description of the operation being timed
        **context: Extra key-value pairs added to the performance entry

    Example:
        >>> with Timer(logger, "Regularization path", frailty="gamma"):
        ...     run_path(data, config)
        INFO     | Starting: Regularization path
        INFO     | Completed: Regularization path | frailty=gamma | duration_sec=3.41
    """

    def __init__(self, logger: logging.Logger, description: str, **context):
        self.logger = logger
        self.description = description
        self.context = context
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info(f"Starting: {self.description}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type is None:
            log_performance(
                self.logger,
                f"Completed: {self.description}",
                **self.context,
                duration_sec=round(self.duration, 3),
            )
        else:
            self.logger.error(
                f"{self.description} failed after {self.duration:.2f}s: {exc_val}"
            )

        # Don't suppress exception
        return False

    def elapsed(self) -> float:
        """Elapsed seconds since entering the context."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time
