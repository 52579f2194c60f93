"""Per-scenario state threaded through every step."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, TypeVar

from ledger_harness.utils.exceptions import ContextFieldMissingError

if TYPE_CHECKING:
    from ledger_harness.core.harness.accounts import Account
    from ledger_harness.core.keys.crypto import KeyList
    from ledger_harness.core.ledger.client import SubscriptionHandle
    from ledger_harness.core.ledger.transactions import TransferTransaction
    from ledger_harness.schemas.ledger import TransactionReceipt

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScenarioPhase(str, Enum):
    INIT = "INIT"
    CONTEXT_POPULATED = "CONTEXT_POPULATED"
    FIXTURES_APPLIED = "FIXTURES_APPLIED"
    ASSERTIONS_RUN = "ASSERTIONS_RUN"
    PASSED = "PASSED"
    FAILED = "FAILED"


_PHASE_ORDER = {phase: i for i, phase in enumerate(ScenarioPhase)}
_TERMINAL = frozenset({ScenarioPhase.PASSED, ScenarioPhase.FAILED})


class IdempotencyRegistry:
    """One-shot guards keyed by fixture name.

    A key stays claimed once its fixture succeeded; a fixture that raised
    releases the key so the failure is what the scenario reports.
    """

    def __init__(self) -> None:
        self._claimed: dict[str, Any] = {}

    def is_claimed(self, key: str) -> bool:
        return key in self._claimed

    def claim(self, key: str) -> bool:
        """Return True if the caller won the key, False if it was already taken."""
        if key in self._claimed:
            return False
        self._claimed[key] = None
        return True

    def release(self, key: str) -> None:
        self._claimed.pop(key, None)

    def result(self, key: str) -> Any:
        return self._claimed.get(key)

    async def run_once(self, key: str, factory: Callable[[], Awaitable[T]]) -> bool:
        """Await `factory()` only the first time `key` is seen. Returns whether it ran."""
        if not self.claim(key):
            logger.debug("harness.idempotency.skip key=%s", key)
            return False
        try:
            self._claimed[key] = await factory()
        except BaseException:
            self.release(key)
            raise
        logger.debug("harness.idempotency.ran key=%s", key)
        return True

    @property
    def keys(self) -> list[str]:
        return list(self._claimed)


class ScenarioContext:
    """Explicit, per-scenario record.

    Every field starts unset; reading an unset field raises
    `ContextFieldMissingError` instead of returning a placeholder. One
    instance belongs to exactly one scenario and is never shared.

    Usable as an async context manager so open subscriptions are always
    cancelled:
    ```python
    async with ScenarioContext("transfer") as ctx:
        ...
    ```
    """

    def __init__(self, name: str = "scenario") -> None:
        self.name = name
        self.idempotency = IdempotencyRegistry()
        self._accounts: dict[str, "Account"] = {}
        self._token_id: Optional[str] = None
        self._topic_id: Optional[str] = None
        self._threshold_key: Optional["KeyList"] = None
        self._pending_transaction: Optional["TransferTransaction"] = None
        self._last_receipt: Optional["TransactionReceipt"] = None
        self._balance_snapshots: dict[str, Any] = {}
        self._subscriptions: list["SubscriptionHandle"] = []
        self._phase = ScenarioPhase.INIT
        self._closed = False

    def _require(self, field: str, value: Optional[T]) -> T:
        if value is None:
            raise ContextFieldMissingError(field)
        return value

    # --- accounts ---

    def account(self, role: str) -> "Account":
        return self._require(f"accounts[{role}]", self._accounts.get(role))

    def set_account(self, role: str, account: "Account") -> None:
        self._accounts[role] = account
        self.advance(ScenarioPhase.CONTEXT_POPULATED)

    def has_account(self, role: str) -> bool:
        return role in self._accounts

    @property
    def roles(self) -> list[str]:
        return list(self._accounts)

    # --- identifiers ---

    @property
    def token_id(self) -> str:
        return self._require("token_id", self._token_id)

    @token_id.setter
    def token_id(self, value: str) -> None:
        self._token_id = value
        self.advance(ScenarioPhase.CONTEXT_POPULATED)

    @property
    def topic_id(self) -> str:
        return self._require("topic_id", self._topic_id)

    @topic_id.setter
    def topic_id(self, value: str) -> None:
        self._topic_id = value
        self.advance(ScenarioPhase.CONTEXT_POPULATED)

    @property
    def threshold_key(self) -> "KeyList":
        return self._require("threshold_key", self._threshold_key)

    @threshold_key.setter
    def threshold_key(self, value: "KeyList") -> None:
        self._threshold_key = value
        self.advance(ScenarioPhase.CONTEXT_POPULATED)

    # --- transactions ---

    @property
    def pending_transaction(self) -> "TransferTransaction":
        return self._require("pending_transaction", self._pending_transaction)

    @pending_transaction.setter
    def pending_transaction(self, value: "TransferTransaction") -> None:
        self._pending_transaction = value
        self.advance(ScenarioPhase.CONTEXT_POPULATED)

    def take_pending_transaction(self) -> "TransferTransaction":
        """Hand the pending transaction to its single submission."""
        tx = self._require("pending_transaction", self._pending_transaction)
        self._pending_transaction = None
        return tx

    @property
    def last_receipt(self) -> "TransactionReceipt":
        return self._require("last_receipt", self._last_receipt)

    @last_receipt.setter
    def last_receipt(self, value: "TransactionReceipt") -> None:
        self._last_receipt = value

    # --- snapshots ---

    def record_balance(self, name: str, value: Any) -> None:
        self._balance_snapshots[name] = value

    def balance_snapshot(self, name: str) -> Any:
        return self._require(f"balance_snapshots[{name}]", self._balance_snapshots.get(name))

    # --- lifecycle ---

    @property
    def phase(self) -> ScenarioPhase:
        return self._phase

    def advance(self, phase: ScenarioPhase) -> None:
        """Move forward through the scenario phases; never backwards."""
        if self._phase in _TERMINAL:
            return
        if _PHASE_ORDER[phase] > _PHASE_ORDER[self._phase]:
            logger.debug("harness.context.phase scenario=%s %s->%s", self.name, self._phase.value, phase.value)
            self._phase = phase

    def finish(self, passed: bool) -> None:
        if self._phase in _TERMINAL:
            return
        self._phase = ScenarioPhase.PASSED if passed else ScenarioPhase.FAILED
        logger.info("harness.context.finished scenario=%s phase=%s", self.name, self._phase.value)

    def track_subscription(self, handle: "SubscriptionHandle") -> "SubscriptionHandle":
        self._subscriptions.append(handle)
        return handle

    @property
    def open_subscriptions(self) -> list["SubscriptionHandle"]:
        return [h for h in self._subscriptions if not h.closed]

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        """Cancel every subscription still open. Safe to call more than once."""
        for handle in self.open_subscriptions:
            logger.info("harness.context.subscription_cancelled scenario=%s", self.name)
            handle.unsubscribe()
        self._subscriptions.clear()
        self._closed = True

    async def __aenter__(self) -> "ScenarioContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.finish(exc_type is None)
        await self.aclose()
