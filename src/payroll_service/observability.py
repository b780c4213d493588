"""Logging setup and operation tracing."""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from payroll_service.errors import PayrollServiceError

logger = logging.getLogger("payroll_service.trace")

T = TypeVar("T")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once at process start."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Keep SQL echo and connection chatter out of application logs
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _format_attrs(attrs: dict[str, Any]) -> str:
    return " ".join(f"{k}={v}" for k, v in sorted(attrs.items()) if v is not None)


async def traced(operation: str, fn: Callable[[], Awaitable[T]], **attrs: Any) -> T:
    """Await ``fn()`` and log its start, duration and outcome.

    Domain errors are logged at INFO with their code, anything else at
    ERROR with a traceback. The exception is always re-raised.
    """
    described = _format_attrs(attrs)
    logger.debug("%s started %s", operation, described)
    started = time.perf_counter()

    try:
        result = await fn()
    except PayrollServiceError as e:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s failed code=%s duration_ms=%.1f %s",
            operation,
            e.code,
            elapsed_ms,
            described,
        )
        raise
    except Exception:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.exception(
            "%s crashed duration_ms=%.1f %s", operation, elapsed_ms, described
        )
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info("%s ok duration_ms=%.1f %s", operation, elapsed_ms, described)
    return result
