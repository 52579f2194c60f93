from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Optional

from ledger_harness.utils.exceptions import LedgerTimeoutError

if TYPE_CHECKING:
    from ledger_harness.core.harness.context import ScenarioContext
    from ledger_harness.core.ledger.client import LedgerQueries, SubscriptionHandle
    from ledger_harness.schemas.ledger import TopicMessage

logger = logging.getLogger(__name__)


class BoundedTopicSubscription:
    """Scoped topic subscription that yields one message or times out.

    ```python
    async with BoundedTopicSubscription(ledger, topic_id, timeout=10) as sub:
        msg = await sub.first()
    ```
    The underlying handle is unsubscribed on exit, and also registered with
    the scenario context (when given) so teardown cancels it if the step
    never reaches `__aexit__`.
    """

    def __init__(
        self,
        queries: "LedgerQueries",
        topic_id: str,
        *,
        timeout: float,
        context: Optional["ScenarioContext"] = None,
        start_sequence: int = 0,
        predicate: Optional[Callable[["TopicMessage"], bool]] = None,
    ) -> None:
        self._queries = queries
        self.topic_id = topic_id
        self.timeout = timeout
        self._context = context
        self._start_sequence = start_sequence
        self._predicate = predicate
        self._handle: Optional["SubscriptionHandle"] = None
        self._future: Optional[asyncio.Future] = None

    async def __aenter__(self) -> "BoundedTopicSubscription":
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._future = future

        def _resolve(msg: "TopicMessage") -> None:
            if future.done():
                return
            if self._predicate is not None and not self._predicate(msg):
                return
            future.set_result(msg)

        def _fail(exc: BaseException) -> None:
            if not future.done():
                future.set_exception(exc)

        # Callbacks may arrive from a transport thread.
        def on_message(msg: "TopicMessage") -> None:
            loop.call_soon_threadsafe(_resolve, msg)

        def on_error(exc: BaseException) -> None:
            loop.call_soon_threadsafe(_fail, exc)

        self._handle = await self._queries.subscribe_topic(
            self.topic_id,
            on_message,
            on_error,
            start_sequence=self._start_sequence,
        )
        if self._context is not None:
            self._context.track_subscription(self._handle)
        logger.debug("harness.subscription.opened topic=%s timeout=%s", self.topic_id, self.timeout)
        return self

    async def first(self) -> "TopicMessage":
        if self._future is None:
            raise RuntimeError("Subscription is not open; use 'async with'")
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise LedgerTimeoutError(
                f"No message received on topic {self.topic_id} within {self.timeout}s",
                details={"topic_id": self.topic_id, "timeout_seconds": self.timeout},
            )

    def cancel(self) -> None:
        if self._handle is not None and not self._handle.closed:
            self._handle.unsubscribe()
            logger.debug("harness.subscription.closed topic=%s", self.topic_id)
        if self._future is not None and not self._future.done():
            self._future.cancel()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()


async def first_topic_message(
    queries: "LedgerQueries",
    topic_id: str,
    *,
    timeout: float,
    context: Optional["ScenarioContext"] = None,
    start_sequence: int = 0,
) -> "TopicMessage":
    async with BoundedTopicSubscription(
        queries,
        topic_id,
        timeout=timeout,
        context=context,
        start_sequence=start_sequence,
    ) as sub:
        return await sub.first()
