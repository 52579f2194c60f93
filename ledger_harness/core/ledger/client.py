"""Ledger Client collaborator interfaces.

The harness never talks to a network directly; it consumes these protocols.
`SimulatedLedger` implements `LedgerClient` in-process, `MirrorNodeClient`
implements the read-only `LedgerQueries` half over HTTP.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from ledger_harness.core.harness.accounts import Account
    from ledger_harness.core.keys.crypto import PrivateKey
    from ledger_harness.core.ledger.transactions import TransferTransaction
    from ledger_harness.schemas.ledger import (
        AccountBalance,
        TokenConfig,
        TokenInfo,
        TopicConfig,
        TopicInfo,
        TopicMessage,
        TransactionReceipt,
    )


MessageCallback = Callable[["TopicMessage"], None]
ErrorCallback = Callable[[BaseException], None]


@runtime_checkable
class SubscriptionHandle(Protocol):
    @property
    def closed(self) -> bool: ...

    def unsubscribe(self) -> None: ...


@runtime_checkable
class LedgerQueries(Protocol):
    async def get_account_balance(self, account_id: str) -> "AccountBalance": ...

    async def get_token_info(self, token_id: str) -> "TokenInfo": ...

    async def get_topic_info(self, topic_id: str) -> "TopicInfo": ...

    async def subscribe_topic(
        self,
        topic_id: str,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        *,
        start_sequence: int = 0,
    ) -> SubscriptionHandle: ...


@runtime_checkable
class LedgerClient(LedgerQueries, Protocol):
    """Write side. `operator` pays the fee and signs every transaction."""

    async def create_token(self, config: "TokenConfig", *, operator: "Account") -> "TransactionReceipt": ...

    async def mint_token(self, token_id: str, amount: int, *, operator: "Account") -> "TransactionReceipt": ...

    async def associate_token(
        self,
        account_id: str,
        token_ids: Sequence[str],
        *,
        operator: "Account",
        signers: Sequence["PrivateKey"] = (),
    ) -> "TransactionReceipt": ...

    async def submit(self, transaction: "TransferTransaction", *, operator: "Account") -> "TransactionReceipt": ...

    async def create_topic(self, config: "TopicConfig", *, operator: "Account") -> "TransactionReceipt": ...

    async def submit_topic_message(
        self,
        topic_id: str,
        message: str | bytes,
        *,
        operator: "Account",
        signers: Sequence["PrivateKey"] = (),
    ) -> "TransactionReceipt": ...
