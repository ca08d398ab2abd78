"""Centralized logging configuration for frailty_mm.

This module provides:
- console and file logging under the ``frailty_mm`` logger hierarchy
- a dedicated performance log for timings and path summaries
- a warnings log with categorized library and solver warnings
- a progress logger usable as the regularization path progress callback

Example:
    >>> from frailty_mm.logging_config import setup_logging, log_performance
    >>> logger = setup_logging(run_type="sample", log_level=logging.INFO)
    >>> logger.info("Starting path")
    >>> log_performance(logger, "Path completed", n_tune=27, tune_min=0.05)
"""
import logging
import sys
import warnings
from pathlib import Path
from datetime import datetime
from typing import Optional, Literal
from contextlib import contextmanager


RunType = Literal["sample", "production"]

LOGGER_NAME = "frailty_mm"


class PerformanceFilter(logging.Filter):
    """Pass only records tagged with ``is_performance``."""

    def filter(self, record):
        return getattr(record, "is_performance", False)


class WarningErrorFilter(logging.Filter):
    """Pass only warnings and errors."""

    def filter(self, record):
        return record.levelno >= logging.WARNING


def setup_logging(
    run_type: RunType = "sample",
    log_level: int = logging.INFO,
    console_output: bool = True,
    log_dir: Optional[str] = None,
) -> logging.Logger:
    """Setup logging for frailty_mm.

    Creates log files in ``log_dir`` (default data/outputs/{run_type}/logs/):
    - main_{timestamp}.log: All log messages
    - performance_{timestamp}.log: Timings and path summaries only
    - warnings_{timestamp}.log: Warnings and errors only

    Args:
        run_type: Type of run (sample/production), determines the log directory
        log_level: Minimum level shown on the console
        console_output: Whether to output logs to console
        log_dir: Override of the log directory

    Returns:
        Configured ``frailty_mm`` logger

    Example:
        >>> logger = setup_logging(run_type="production", log_level=logging.INFO)
        >>> logger.warning("MM iterations did not converge for 2 tuning values")
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_dir) if log_dir else Path(f"data/outputs/{run_type}/logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handlers

    # Close handlers from a previous setup to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    performance_formatter = logging.Formatter(
        fmt="%(asctime)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(fmt="%(levelname)-8s | %(message)s"))
        logger.addHandler(console_handler)

    def _file_handler(prefix, level, formatter, log_filter=None):
        handler = logging.FileHandler(
            log_dir / f"{prefix}_{timestamp}.log", mode="w", encoding="utf-8"
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if log_filter is not None:
            handler.addFilter(log_filter)
        logger.addHandler(handler)

    _file_handler("main", logging.DEBUG, detailed_formatter)
    _file_handler("performance", logging.INFO, performance_formatter, PerformanceFilter())
    _file_handler("warnings", logging.WARNING, detailed_formatter, WarningErrorFilter())

    logger.info(f"Logging initialized for {run_type} run")
    logger.info(f"Log directory: {log_dir.absolute()}")

    return logger


def log_performance(logger: logging.Logger, message: str, **kwargs):
    """Log a performance message with timing data or metrics.

    The entry goes to the main log and to the dedicated performance log.

    Args:
        logger: Logger instance
        message: Performance message description
        **kwargs: Additional context (duration, tuning values, BIC, ...)

    Example:
        >>> log_performance(logger, "Regularization path completed",
        ...                 n_tune=27, tune_min=0.0498, duration_sec=3.4)
        # Output: "Regularization path completed | n_tune=27 | tune_min=0.0498 | duration_sec=3.4"
    """
    if kwargs:
        metrics_str = " | ".join(f"{k}={v}" for k, v in kwargs.items())
        message = f"{message} | {metrics_str}"

    logger.info(message, extra={"is_performance": True})


class WarningLogger:
    """Captures warnings and categorizes them for analysis.

    Categories:
    - convergence: MM iterations stopping at maxit
    - numerical: Overflow, underflow, invalid values
    - linear_algebra: Singular or ill-conditioned Newton systems
    - data: Data quality issues
    - other: Uncategorized warnings
    """

    WARNING_CATEGORIES = {
        "convergence": ["ConvergenceWarning", "did not converge", "maxit"],
        "numerical": ["overflow", "underflow", "invalid value", "divide by zero"],
        "linear_algebra": ["ill-conditioned", "singular", "LinAlg"],
        "data": ["missing values", "unknown categories", "sample size"],
    }

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.warning_counts = {cat: 0 for cat in self.WARNING_CATEGORIES}
        self.warning_counts["other"] = 0

    def categorize_warning(self, message: str) -> str:
        """Category name of a warning message, matched on keywords."""
        message_lower = message.lower()
        for category, keywords in self.WARNING_CATEGORIES.items():
            if any(kw.lower() in message_lower for kw in keywords):
                return category
        return "other"

    def log_warning(self, message: str, category: Optional[str] = None):
        """Log a warning with a category tag.

        Args:
            message: Warning message
            category: Category name (auto-detected if None)
        """
        if category is None:
            category = self.categorize_warning(message)

        self.warning_counts[category] += 1
        self.logger.warning(f"[{category.upper()}] {message}")

    def summary(self) -> dict:
        """Counts of the categories that received warnings."""
        return {k: v for k, v in self.warning_counts.items() if v > 0}


@contextmanager
def capture_warnings(logger: logging.Logger):
    """Redirect Python warnings to the logger for the duration of a block.

    Args:
        logger: Logger instance

    Yields:
        WarningLogger instance for accessing warning counts

    Example:
        >>> with capture_warnings(logger) as warning_logger:
        ...     result = run_path(data, config)
        >>> warning_logger.summary()
        {'convergence': 1}
    """
    warning_logger = WarningLogger(logger)

    def warning_handler(message, category, filename, lineno, file=None, line=None):
        warning_logger.log_warning(f"{category.__name__}: {message}")

    old_showwarning = warnings.showwarning
    warnings.showwarning = warning_handler

    try:
        yield warning_logger
    finally:
        warnings.showwarning = old_showwarning

        summary = warning_logger.summary()
        if summary:
            summary_str = ", ".join(f"{k}={v}" for k, v in summary.items())
            logger.info(f"Warning summary: {summary_str}")


class ProgressLogger:
    """Logs progress of a regularization path.

    Instances are callables with the path progress signature
    ``(step, total, entry)``, so they can be passed straight to ``run_path``.

    Example:
        >>> progress = ProgressLogger(logger, desc="LASSO path", log_interval=5)
        >>> result = run_path(data, config, progress=progress)
        # Output: "LASSO path: 5/27 (18.5%) | tune=0.0120, dof=12, bic=1523.1873"
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int = 0,
        desc: str = "Regularization path",
        log_interval: int = 1,
    ):
        """Initialize progress logger.

        Args:
            logger: Logger instance
            total: Total number of steps, updated by the path callback
            desc: Description of the operation
            log_interval: Log every N steps
        """
        self.logger = logger
        self.total = total
        self.desc = desc
        self.log_interval = log_interval
        self.current = 0

    def update(self, n: int = 1, metrics: Optional[dict] = None):
        """Advance progress by n steps and log when due.

        Args:
            n: Number of steps to advance
            metrics: Optional metrics to include in the log message
        """
        self.current += n

        if self.current % self.log_interval == 0 or self.current == self.total:
            pct = (self.current / self.total) * 100 if self.total else 100.0
            msg = f"{self.desc}: {self.current}/{self.total} ({pct:.1f}%)"

            if metrics:
                metrics_str = ", ".join(f"{k}={v:.4f}" if isinstance(v, float) else f"{k}={v}"
                                        for k, v in metrics.items())
                msg += f" | {metrics_str}"

            self.logger.info(msg)

    def __call__(self, step: int, total: int, entry) -> None:
        self.total = total
        self.update(
            step - self.current,
            metrics={"tune": entry.tune, "dof": entry.dof, "bic": entry.bic},
        )
