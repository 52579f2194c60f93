from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Sequence

from ledger_harness.core.harness.context import ScenarioPhase
from ledger_harness.core.keys.crypto import Key, KeyList
from ledger_harness.core.ledger.transactions import TransferTransaction
from ledger_harness.schemas.ledger import ReceiptStatus, TokenConfig, TopicConfig, TransactionReceipt
from ledger_harness.utils.exceptions import PreconditionFailedError, ReceiptStatusError
from ledger_harness.utils.validation import hbar_to_tinybars, tinybars_to_hbar, validate_token_amount

if TYPE_CHECKING:
    from ledger_harness.core.harness.accounts import Account
    from ledger_harness.core.harness.context import ScenarioContext
    from ledger_harness.core.ledger.client import LedgerClient

logger = logging.getLogger(__name__)


def fee_snapshot_name(account_id: str) -> str:
    return f"hbar:{account_id}:before-submit"


def htt_token_config(
    treasury: "Account",
    *,
    initial_supply: int = 0,
    max_supply: int = 0,
    name: str = "Test Token",
    symbol: str = "HTT",
    decimals: int = 2,
) -> TokenConfig:
    """Fungible token owned by `treasury`, which also holds the admin and supply keys."""
    return TokenConfig(
        name=name,
        symbol=symbol,
        decimals=decimals,
        initial_supply=initial_supply,
        max_supply=max_supply,
        treasury_account_id=treasury.account_id,
        admin_key=treasury.public_key,
        supply_key=treasury.public_key,
    )


class FixtureProvisioner:
    """Brings the ledger into the state a scenario's assertions depend on.

    Every operation either establishes its precondition or raises; nothing is
    retried, so environment problems surface as scenario failures.
    """

    def __init__(self, ledger: "LedgerClient", context: "ScenarioContext") -> None:
        self.ledger = ledger
        self.context = context

    async def _tinybars(self, account: "Account") -> int:
        balance = await self.ledger.get_account_balance(account.account_id)
        return balance.tinybars

    async def ensure_minimum_balance(self, account: "Account", hbars: int | str | Decimal) -> Decimal:
        """Require strictly more than `hbars`. The harness never tops accounts up."""
        required = hbar_to_tinybars(hbars)
        actual = await self._tinybars(account)
        if not actual > required:
            raise PreconditionFailedError(
                f"Expected >{hbars}ℏ on {account}, got {tinybars_to_hbar(actual)}ℏ",
                expected=f">{hbars}",
                actual=str(tinybars_to_hbar(actual)),
                details={"account_id": account.account_id},
            )
        self.context.advance(ScenarioPhase.FIXTURES_APPLIED)
        return tinybars_to_hbar(actual)

    async def ensure_exact_balance(self, account: "Account", hbars: int | str | Decimal) -> Decimal:
        required = hbar_to_tinybars(hbars)
        actual = await self._tinybars(account)
        if actual != required:
            raise PreconditionFailedError(
                f"Expected ={hbars}ℏ on {account}, got {tinybars_to_hbar(actual)}ℏ",
                expected=str(tinybars_to_hbar(required)),
                actual=str(tinybars_to_hbar(actual)),
                details={"account_id": account.account_id},
            )
        self.context.advance(ScenarioPhase.FIXTURES_APPLIED)
        return tinybars_to_hbar(actual)

    async def create_token(self, treasury: "Account", config: TokenConfig) -> str:
        receipt = await self.ledger.create_token(config, operator=treasury)
        if receipt.token_id is None:
            raise PreconditionFailedError(
                "Token creation receipt carries no token id",
                expected="token_id",
                actual=None,
                details={"transaction_id": receipt.transaction_id},
            )
        self.context.last_receipt = receipt
        self.context.token_id = receipt.token_id

        info = await self.ledger.get_token_info(receipt.token_id)
        if info.total_supply != config.initial_supply:
            raise PreconditionFailedError(
                f"Token {receipt.token_id} total supply is {info.total_supply}, requested {config.initial_supply}",
                expected=config.initial_supply,
                actual=info.total_supply,
            )
        if info.max_supply != config.max_supply:
            raise PreconditionFailedError(
                f"Token {receipt.token_id} max supply is {info.max_supply}, requested {config.max_supply}",
                expected=config.max_supply,
                actual=info.max_supply,
            )
        logger.info(
            "harness.fixture.token_created token=%s treasury=%s supply=%s max=%s",
            receipt.token_id,
            treasury,
            config.initial_supply,
            config.max_supply,
        )
        self.context.advance(ScenarioPhase.FIXTURES_APPLIED)
        return receipt.token_id

    async def mint(self, treasury: "Account", amount: int) -> TransactionReceipt:
        receipt = await self.ledger.mint_token(
            self.context.token_id,
            validate_token_amount(amount),
            operator=treasury,
        )
        self.context.last_receipt = receipt
        return receipt

    async def ensure_associated(self, account: "Account", *, payer: "Account") -> bool:
        """Associate `account` with the scenario token; True if an association was made.

        The payer covers the fee and the account only signs, so accounts held
        at an exact native balance keep it. An "already associated" rejection
        counts as success.
        """
        token_id = self.context.token_id
        balance = await self.ledger.get_account_balance(account.account_id)
        if balance.token_balance(token_id) is not None:
            return False
        try:
            await self.ledger.associate_token(
                account.account_id,
                [token_id],
                operator=payer,
                signers=[account.private_key],
            )
        except ReceiptStatusError as exc:
            if exc.status == ReceiptStatus.TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT.value:
                logger.info("harness.fixture.already_associated account=%s token=%s", account, token_id)
                return False
            raise
        logger.info("harness.fixture.associated account=%s token=%s payer=%s", account, token_id, payer)
        return True

    async def ensure_token_holding(self, account: "Account", amount: int, *, treasury: "Account") -> bool:
        """Make `account` hold exactly `amount` units of the scenario token.

        The disbursement runs at most once per (token, account) in a scenario;
        later calls only verify. Returns whether this call disbursed.
        """
        validate_token_amount(amount, allow_zero=True)
        token_id = self.context.token_id

        async def _disburse() -> int:
            await self.ensure_associated(account, payer=treasury)
            balance = await self.ledger.get_account_balance(account.account_id)
            delta = amount - (balance.token_balance(token_id) or 0)
            if delta == 0:
                return 0
            tx = (
                TransferTransaction(memo="harness initial disbursement")
                .add_token_transfer(token_id, treasury.account_id, -delta)
                .add_token_transfer(token_id, account.account_id, delta)
                .freeze_with(treasury.account_id)
            )
            if delta < 0:
                # Excess goes back to the treasury, so the holder must sign.
                tx.sign(account.private_key)
            await self.ledger.submit(tx, operator=treasury)
            logger.info(
                "harness.fixture.deposit account=%s token=%s amount=%s",
                account,
                token_id,
                delta,
            )
            return delta

        ran = await self.context.idempotency.run_once(f"token-deposit:{token_id}:{account.account_id}", _disburse)

        balance = await self.ledger.get_account_balance(account.account_id)
        held = balance.token_balance(token_id)
        if held != amount:
            raise PreconditionFailedError(
                f"Expected ={amount} of token {token_id} on {account}, got {held}",
                expected=amount,
                actual=held,
                details={"account_id": account.account_id, "token_id": token_id},
            )
        self.context.advance(ScenarioPhase.FIXTURES_APPLIED)
        return ran

    def create_threshold_key(self, accounts: Sequence["Account"], threshold: int) -> KeyList:
        key = KeyList([a.public_key for a in accounts], threshold=threshold)
        self.context.threshold_key = key
        return key

    async def create_topic(self, operator: "Account", memo: str, *, submit_key: Optional[Key] = None) -> str:
        receipt = await self.ledger.create_topic(TopicConfig(memo=memo, submit_key=submit_key), operator=operator)
        if receipt.topic_id is None:
            raise PreconditionFailedError(
                "Topic creation receipt carries no topic id",
                expected="topic_id",
                actual=None,
                details={"transaction_id": receipt.transaction_id},
            )
        self.context.last_receipt = receipt
        self.context.topic_id = receipt.topic_id

        info = await self.ledger.get_topic_info(receipt.topic_id)
        if info.memo != memo:
            raise PreconditionFailedError(
                f"Topic {receipt.topic_id} memo is {info.memo!r}, requested {memo!r}",
                expected=memo,
                actual=info.memo,
            )
        logger.info("harness.fixture.topic_created topic=%s operator=%s", receipt.topic_id, operator)
        self.context.advance(ScenarioPhase.FIXTURES_APPLIED)
        return receipt.topic_id

    async def publish_message(
        self,
        operator: "Account",
        message: str,
        *,
        signers: Sequence["Account"] = (),
    ) -> TransactionReceipt:
        receipt = await self.ledger.submit_topic_message(
            self.context.topic_id,
            message,
            operator=operator,
            signers=[s.private_key for s in signers],
        )
        self.context.last_receipt = receipt
        logger.info(
            "harness.fixture.message_published topic=%s sequence=%s",
            receipt.topic_id,
            receipt.topic_sequence_number,
        )
        return receipt

    def build_transfer(
        self,
        legs: Sequence[tuple["Account", int]],
        *,
        payer: "Account",
        signers: Sequence["Account"],
    ) -> TransferTransaction:
        """Compose, freeze and sign a token transfer; it becomes the pending transaction."""
        token_id = self.context.token_id
        tx = TransferTransaction()
        for account, amount in legs:
            tx.add_token_transfer(token_id, account.account_id, amount)
        tx.freeze_with(payer.account_id)
        for signer in signers:
            tx.sign(signer.private_key)
        self.context.pending_transaction = tx
        logger.debug("harness.fixture.transfer_built tx=%s signers=%s", tx.transaction_id, len(signers))
        return tx

    async def submit_pending(self, operator: "Account") -> TransactionReceipt:
        """Submit the pending transaction exactly once, recording the payer's balance first."""
        self.context.record_balance(fee_snapshot_name(operator.account_id), await self._tinybars(operator))
        tx = self.context.take_pending_transaction()
        receipt = await self.ledger.submit(tx, operator=operator)
        self.context.last_receipt = receipt
        return receipt
