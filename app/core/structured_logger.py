"""
Structured logging for payment lifecycle events.

Every lifecycle log carries:
- component ("payments", "payment_methods", "bundles", "gateway")
- operation ("create", "dispatch", "confirm", "set_main", ...)
- correlation_id (payment / method / bundle id, optional)
- outcome ("success", "failed", "duplicate", "rejected")
- duration_ms (optional)
- reason (optional, short and non-PII)

Never log card info, gateway secrets or raw callback bodies.
"""
import time
from contextlib import contextmanager
from logging import Logger
from typing import Optional


def log_event(
    logger: Logger,
    *,
    component: str,
    operation: str,
    outcome: str,
    correlation_id: Optional[str] = None,
    duration_ms: Optional[int] = None,
    reason: Optional[str] = None,
    level: str = "info",
    message: Optional[str] = None,
    **fields,
) -> None:
    """
    Emit a structured log event.

    Args:
        logger: Logger instance
        component: Component name
        operation: Operation name
        outcome: Outcome of the operation
        correlation_id: Record identifier (optional)
        duration_ms: Duration in milliseconds (omitted if None)
        reason: Short explanation (optional)
        level: Log level name
        message: Message override (defaults to "COMPONENT_OPERATION key=value ...")
        **fields: Extra non-PII fields (gateway, user_id, ...)
    """
    extra: dict = {
        "component": component,
        "operation": operation,
        "outcome": outcome,
    }
    if correlation_id is not None:
        extra["correlation_id"] = str(correlation_id)
    if duration_ms is not None:
        extra["duration_ms"] = duration_ms
    if reason is not None:
        extra["reason"] = reason
    extra.update({k: v for k, v in fields.items() if v is not None})

    if message is None:
        rendered = " ".join(f"{k}={v}" for k, v in extra.items() if k not in ("component", "operation"))
        message = f"{component.upper()}_{operation.upper()} {rendered}"
    log_method = getattr(logger, level.lower(), logger.info)
    log_method(message, extra=extra)


@contextmanager
def elapsed_ms():
    """Yield a callable returning milliseconds since entering the block."""
    started = time.monotonic()
    yield lambda: int((time.monotonic() - started) * 1000)
