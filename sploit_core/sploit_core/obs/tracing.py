from __future__ import annotations
import time
import uuid
import contextvars
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, cast

from .logging import get_logger

T = TypeVar("T")

# Per-thread/task trace id propagation
_current_trace_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("trace_id", default=None)


def current_trace_id() -> str:
    tid = _current_trace_id.get()
    if not tid:
        tid = uuid.uuid4().hex
        _current_trace_id.set(tid)
    return tid


def trace_call(name: Optional[str] = None, level: str = "debug") -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Lightweight tracing decorator that logs start/end with duration and a trace_id
    using the 'sploit.trace' logger. Errors are logged and re-raised unchanged.
    """
    def decorator(fn: Callable[..., T]) -> Callable[..., T]:
        lbl = name or fn.__name__
        log = get_logger("sploit.trace")
        lvl = level.lower()

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            trace_id = current_trace_id()
            t0 = time.monotonic()
            getattr(log, lvl)(f"start {lbl}", extra={"request_id": trace_id, "node": lbl})
            try:
                res = fn(*args, **kwargs)
            except Exception as e:
                dt = int((time.monotonic() - t0) * 1000)
                log.error(f"error {lbl}: {e}", extra={"request_id": trace_id, "node": lbl, "duration_ms": dt, "error_code": type(e).__name__})
                raise
            dt = int((time.monotonic() - t0) * 1000)
            getattr(log, lvl)(f"end {lbl}", extra={"request_id": trace_id, "node": lbl, "duration_ms": dt})
            return cast(T, res)
        return wrapper
    return decorator
