from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, TypeVar

from ledger_harness.core.harness.context import ScenarioContext
from ledger_harness.utils.exceptions import LedgerTimeoutError
from ledger_harness.utils.observability import log_duration

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScenarioRunner:
    """Drives one scenario's steps on a private event loop.

    Steps are synchronous pytest-bdd functions; each one hands its coroutine
    to `run`, which blocks until it completes, so steps never overlap. The
    loop lives exactly as long as the scenario.
    """

    def __init__(self, context: ScenarioContext, *, step_timeout: float = 60.0) -> None:
        if step_timeout <= 0:
            raise ValueError("step_timeout must be > 0")
        self.context = context
        self.step_timeout = step_timeout
        self._runner: Optional[asyncio.Runner] = asyncio.Runner()
        self._steps = 0

    @property
    def closed(self) -> bool:
        return self._runner is None

    def run(self, coro: Coroutine[Any, Any, T], *, timeout: Optional[float] = None, step: str = "step") -> T:
        if self._runner is None:
            coro.close()
            raise RuntimeError(f"Scenario {self.context.name!r} runner is already closed")

        budget = timeout or self.step_timeout
        self._steps += 1

        async def _bounded() -> T:
            try:
                return await asyncio.wait_for(coro, timeout=budget)
            except asyncio.TimeoutError:
                raise LedgerTimeoutError(
                    f"Step {step!r} did not finish within {budget}s",
                    details={"scenario": self.context.name, "step": step, "timeout_seconds": budget},
                )

        with log_duration(logger, "harness.step", scenario=self.context.name, step=step, n=self._steps):
            return self._runner.run(_bounded())

    def close(self, *, passed: Optional[bool] = None) -> None:
        """Cancel open subscriptions and shut the loop down. Idempotent."""
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        try:
            if passed is not None:
                self.context.finish(passed)
            runner.run(self.context.aclose())
        finally:
            runner.close()
            logger.debug("harness.runner.closed scenario=%s steps=%s", self.context.name, self._steps)

    def __enter__(self) -> "ScenarioRunner":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close(passed=exc_type is None)
