"""Logging configuration for the ingress controller using structlog."""

import logging
import os
import sys
from typing import Any

import structlog

# Client libraries that log every request and watch chunk at DEBUG
CLIENT_LOGGERS = ("kubernetes", "urllib3")

LOG_FORMATS = ("console", "json")


def setup_logging(verbose: bool = False) -> None:
    """Configure structlog for the controller process.

    Every line carries the emitting thread's name, so output from the
    reconcile engine and the per-kind watch threads can be told apart.
    The Kubernetes client and urllib3 are held at WARNING or above.
    Calling it again re-applies the level to the stdlib root logger.

    Args:
        verbose: If True, enables DEBUG logging regardless of LOG_LEVEL env var
    """
    log_level = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        log_level, numeric_level = "INFO", logging.INFO

    log_format = os.getenv("LOG_FORMAT", "console").lower()
    if log_format not in LOG_FORMATS:
        log_format = "console"

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level, force=True)
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.CallsiteParameterAdder(
                {structlog.processors.CallsiteParameter.THREAD_NAME}
            ),
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _get_renderer(log_format),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.get_logger(__name__).info("Logging configured", log_level=log_level,
                                        log_format=log_format, verbose=verbose)


def _get_renderer(log_format: str) -> Any:
    """JSON lines for log collectors, colored key/value output on a terminal."""
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name, typically __name__

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def log_function_entry(logger: structlog.stdlib.BoundLogger, func_name: str, **kwargs: Any) -> None:
    """Log function entry with parameters."""
    logger.debug("Function entry", function=func_name, **kwargs)


def log_function_exit(logger: structlog.stdlib.BoundLogger, func_name: str, **kwargs: Any) -> None:
    """Log function exit with return values or exit status."""
    logger.debug("Function exit", function=func_name, **kwargs)


def log_k8s_operation(logger: structlog.stdlib.BoundLogger, operation: str, namespace: str, **kwargs: Any) -> None:
    """Log Kubernetes operation details.

    Args:
        logger: The logger instance
        operation: Type of K8s operation (list, watch, read_service, ...)
        namespace: Namespace the operation targets
        **kwargs: Additional operation details
    """
    logger.debug("Kubernetes operation", operation=operation, namespace=namespace, **kwargs)


def log_reconcile_event(logger: structlog.stdlib.BoundLogger, event_type: str, **kwargs: Any) -> None:
    """Log reconciliation events.

    Args:
        logger: The logger instance
        event_type: Type of reconciliation event
        **kwargs: Event details
    """
    logger.info("Reconcile event", event_type=event_type, **kwargs)
