from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator


@contextmanager
def log_duration(logger: Any, operation: str, **fields: object) -> Iterator[None]:
    """Log how long a step or ledger call took and whether it raised.

    Emits one DEBUG record in a stable key=value format so scenario logs stay
    greppable without a JSON formatter. The exception itself is re-raised untouched.
    """
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except BaseException as exc:
        outcome = type(exc).__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        extras = " ".join(f"{k}={v}" for k, v in fields.items())
        if extras:
            logger.debug(
                "op=%s outcome=%s duration_ms=%.2f %s", operation, outcome, elapsed_ms, extras
            )
        else:
            logger.debug("op=%s outcome=%s duration_ms=%.2f", operation, outcome, elapsed_ms)
