from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Optional

from ledger_harness.core.harness.context import ScenarioPhase
from ledger_harness.core.harness.fixtures import fee_snapshot_name
from ledger_harness.core.harness.subscription import first_topic_message
from ledger_harness.schemas.ledger import ReceiptStatus, TokenInfo, TopicMessage
from ledger_harness.utils.exceptions import (
    AssertionMismatchError,
    ExpectedFailureMissingError,
    ReceiptStatusError,
)
from ledger_harness.utils.validation import hbar_to_tinybars, tinybars_to_hbar

if TYPE_CHECKING:
    from ledger_harness.core.harness.accounts import Account
    from ledger_harness.core.harness.context import ScenarioContext
    from ledger_harness.core.ledger.client import LedgerQueries

logger = logging.getLogger(__name__)


def _check(what: str, expected: Any, actual: Any) -> None:
    if expected != actual:
        raise AssertionMismatchError(
            f"{what}: expected {expected!r}, got {actual!r}",
            expected=expected,
            actual=actual,
        )


class AssertionAdapter:
    """Turns ledger queries and subscriptions into pass/fail checks.

    Comparisons are exact: token units are integers and hbar amounts are
    compared in tinybars.
    """

    def __init__(
        self,
        queries: "LedgerQueries",
        context: "ScenarioContext",
        *,
        subscription_timeout: float = 30.0,
    ) -> None:
        self.queries = queries
        self.context = context
        self.subscription_timeout = subscription_timeout

    def _ran(self) -> None:
        self.context.advance(ScenarioPhase.ASSERTIONS_RUN)

    # --- native balance ---

    async def assert_hbar_greater_than(self, account: "Account", hbars: int | str | Decimal) -> Decimal:
        balance = await self.queries.get_account_balance(account.account_id)
        self._ran()
        if not balance.tinybars > hbar_to_tinybars(hbars):
            raise AssertionMismatchError(
                f"{account} balance: expected >{hbars}ℏ, got {balance.hbars}ℏ",
                expected=f">{hbars}",
                actual=str(balance.hbars),
            )
        return balance.hbars

    async def assert_hbar_equals(self, account: "Account", hbars: int | str | Decimal) -> Decimal:
        balance = await self.queries.get_account_balance(account.account_id)
        self._ran()
        _check(f"{account} hbar balance", tinybars_to_hbar(hbar_to_tinybars(hbars)), balance.hbars)
        return balance.hbars

    async def assert_hbar_decreased(self, account: "Account", snapshot: Optional[str] = None) -> int:
        """Require a strict drop against a recorded snapshot; returns the drop in tinybars."""
        before = self.context.balance_snapshot(snapshot or fee_snapshot_name(account.account_id))
        balance = await self.queries.get_account_balance(account.account_id)
        self._ran()
        if not balance.tinybars < before:
            raise AssertionMismatchError(
                f"{account} balance did not decrease: before {before} tinybars, now {balance.tinybars}",
                expected=f"<{before}",
                actual=balance.tinybars,
            )
        logger.info("harness.assert.fee_paid account=%s tinybars=%s", account, before - balance.tinybars)
        return before - balance.tinybars

    # --- tokens ---

    async def assert_token_balance(
        self,
        account: "Account",
        expected: int,
        *,
        token_id: Optional[str] = None,
    ) -> None:
        token_id = token_id or self.context.token_id
        balance = await self.queries.get_account_balance(account.account_id)
        self._ran()
        held = balance.token_balance(token_id)
        if held is None:
            raise AssertionMismatchError(
                f"{account} is not associated with token {token_id}",
                expected=expected,
                actual=None,
                details={"token_id": token_id},
            )
        _check(f"{account} balance of {token_id}", expected, held)

    async def _token_info(self) -> TokenInfo:
        info = await self.queries.get_token_info(self.context.token_id)
        self._ran()
        return info

    async def assert_token_name(self, expected: str) -> None:
        _check("token name", expected, (await self._token_info()).name)

    async def assert_token_symbol(self, expected: str) -> None:
        _check("token symbol", expected, (await self._token_info()).symbol)

    async def assert_token_decimals(self, expected: int) -> None:
        _check("token decimals", expected, (await self._token_info()).decimals)

    async def assert_token_admin_key(self, account: "Account") -> None:
        _check("token admin key", account.public_key, (await self._token_info()).admin_key)

    async def assert_total_supply(self, expected: int) -> None:
        _check("token total supply", expected, (await self._token_info()).total_supply)

    async def assert_max_supply(self, expected: int) -> None:
        _check("token max supply", expected, (await self._token_info()).max_supply)

    # --- topics ---

    async def assert_topic_memo(self, expected: str) -> None:
        info = await self.queries.get_topic_info(self.context.topic_id)
        self._ran()
        _check("topic memo", expected, info.memo)

    async def assert_topic_message_received(
        self,
        expected: str,
        *,
        timeout: Optional[float] = None,
        start_sequence: int = 0,
    ) -> TopicMessage:
        """Wait for the first message on the scenario topic and compare its text."""
        message = await first_topic_message(
            self.queries,
            self.context.topic_id,
            timeout=timeout or self.subscription_timeout,
            context=self.context,
            start_sequence=start_sequence,
        )
        self._ran()
        _check("topic message", expected, message.text)
        logger.info(
            "harness.assert.message_received topic=%s sequence=%s contents=%s",
            message.topic_id,
            message.sequence_number,
            message.text,
        )
        return message

    # --- receipts ---

    def assert_receipt_succeeded(self) -> None:
        self._ran()
        _check("receipt status", ReceiptStatus.SUCCESS, self.context.last_receipt.status)

    async def assert_fails(
        self,
        operation: Awaitable[Any],
        *,
        expected_status: Optional[ReceiptStatus] = None,
    ) -> ReceiptStatusError:
        """Await `operation` and require the ledger to reject it.

        Only a `ReceiptStatusError` counts as the expected failure. Unset
        context fields, invalid input, failed preconditions and timeouts
        propagate unchanged.
        """
        try:
            await operation
        except ReceiptStatusError as exc:
            self._ran()
            if expected_status is not None:
                _check("rejection status", expected_status.value, exc.status)
            logger.info("harness.assert.failed_as_expected status=%s tx=%s", exc.status, exc.transaction_id)
            return exc
        self._ran()
        raise ExpectedFailureMissingError("Operation succeeded but a failure was expected")
