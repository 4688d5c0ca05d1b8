"""Run-scoped observability helpers for imports and maintenance jobs."""

from __future__ import annotations

import logging
import threading
from contextvars import ContextVar
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_run_id_ctx: ContextVar[Optional[str]] = ContextVar("import_run_id", default=None)

_counters: Dict[Tuple[str, str], float] = {}
_counters_lock = threading.Lock()


def bind_run_id(value: Optional[str]) -> ContextVar.Token | None:
    """Bind an import run id for the current context and return the reset token."""

    if value is None:
        return None
    return _run_id_ctx.set(value)


def reset_run_id(token: Optional[ContextVar.Token]) -> None:
    """Reset the run id context using the provided token."""

    if token is None:
        return
    _run_id_ctx.reset(token)


def current_run_id() -> Optional[str]:
    """Return the active import run id if set."""

    return _run_id_ctx.get()


def log_event(message: str, **extra: object) -> None:
    """Log an event with the active run id automatically attached."""

    payload = {"run_id": current_run_id(), **extra}
    logger.info(message, extra={"payload": payload})


# ---------------------------------------------------------------------------
# Counters and gauges
# ---------------------------------------------------------------------------


def increment(name: str, amount: float = 1, *, label: str = "") -> float:
    """Add ``amount`` to a counter and return the new total."""

    with _counters_lock:
        total = _counters.get((name, label), 0) + amount
        _counters[(name, label)] = total
    log_event("counter", name=name, label=label, amount=amount, total=total)
    return total


def set_gauge(name: str, value: float, *, label: str = "") -> None:
    with _counters_lock:
        _counters[(name, label)] = value


def counter_value(name: str, label: str = "") -> float:
    with _counters_lock:
        return _counters.get((name, label), 0)


def counters_snapshot() -> Dict[str, float]:
    """Flat ``name{label}`` view of every counter, for CLI and health output."""

    with _counters_lock:
        items = list(_counters.items())
    return {
        (f"{name}{{{label}}}" if label else name): value
        for (name, label), value in sorted(items)
    }


def reset_counters() -> None:
    with _counters_lock:
        _counters.clear()
