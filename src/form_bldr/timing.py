from __future__ import annotations

from contextlib import contextmanager
from typing import Any
import time

from .instrumentation import Cat
from .session import BuilderSession

SLOW_PHASE_S = 5.0


@contextmanager
def phase_timer(
    session: BuilderSession | None,
    label: str,
    *,
    cat: Cat = Cat.COORD,
    ctx: dict[str, Any] | None = None,
):
    """Log START/END around one persist sequence. Works across awaits inside an async function."""
    if session is None:
        raise RuntimeError("phase_timer requires an active BuilderSession")
    start = time.perf_counter()
    merged_ctx: dict[str, Any] = {"op": label}
    if ctx:
        merged_ctx.update(ctx)
    session.emit_diag(cat, f"START phase: {label}", **merged_ctx)
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        merged_ctx["elapsed_s"] = round(elapsed, 3)
        session.counters.inc(f"phase.{label}")
        if elapsed >= SLOW_PHASE_S:
            session.emit_signal(
                cat, f"END phase: {label} (slow, {elapsed:.2f} seconds)", level="warning", **merged_ctx
            )
        else:
            session.emit_diag(cat, f"END phase: {label} ({elapsed:.2f} seconds)", **merged_ctx)
