"""In-process ledger network.

Implements `LedgerClient` with the rules the scenarios depend on: flat
per-transaction fees paid by the operator, Ed25519 signature checks over the
canonical body bytes, token supply limits, associations, atomic multi-leg
transfers, and topics with replayable message streams. Rejected transactions
leave state untouched apart from the fee.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence

from ledger_harness.core.keys.canonical import canonical_json
from ledger_harness.core.keys.crypto import Key, PrivateKey, signature_map
from ledger_harness.core.ledger.client import ErrorCallback, MessageCallback
from ledger_harness.core.ledger.transactions import TransferTransaction, new_transaction_id
from ledger_harness.schemas.ledger import (
    AccountBalance,
    ReceiptStatus,
    TokenConfig,
    TokenInfo,
    TokenSupplyType,
    TopicConfig,
    TopicInfo,
    TopicMessage,
    TransactionReceipt,
)
from ledger_harness.utils.exceptions import BadRequestException, NotFoundException, ReceiptStatusError
from ledger_harness.utils.observability import log_duration
from ledger_harness.utils.validation import validate_entity_id

if TYPE_CHECKING:
    from ledger_harness.core.harness.accounts import Account

logger = logging.getLogger(__name__)

Validator = Callable[[bytes, Mapping[bytes, bytes]], Optional[ReceiptStatus]]


@dataclass
class _AccountState:
    account_id: str
    key: Key
    tinybars: int
    # Presence of a token id means the account is associated with it.
    tokens: dict[str, int] = field(default_factory=dict)


@dataclass
class _TokenState:
    token_id: str
    config: TokenConfig
    total_supply: int


@dataclass
class _TopicState:
    topic_id: str
    memo: str
    submit_key: Optional[Key]
    admin_key: Optional[Key]
    messages: list[TopicMessage] = field(default_factory=list)
    subscribers: list["_SimulatedSubscription"] = field(default_factory=list)


class _SimulatedSubscription:
    def __init__(
        self,
        ledger: "SimulatedLedger",
        topic_id: str,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self._ledger = ledger
        self.topic_id = topic_id
        self._on_message = on_message
        self._on_error = on_error
        self._loop = loop
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: TopicMessage) -> None:
        self._loop.call_soon_threadsafe(self._dispatch, message)

    def _dispatch(self, message: TopicMessage) -> None:
        if self._closed:
            return
        try:
            self._on_message(message)
        except Exception as exc:
            logger.exception("ledger.sim.subscription_callback_failed topic=%s", self.topic_id)
            self._on_error(exc)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._ledger._drop_subscription(self)


class SimulatedLedger:
    def __init__(
        self,
        *,
        fee_tinybars: int = 100_000,
        shard: int = 0,
        realm: int = 0,
        first_entity_num: int = 1001,
        latency_seconds: float = 0.0,
    ) -> None:
        if fee_tinybars < 0:
            raise BadRequestException("fee_tinybars must be >= 0")
        self.fee_tinybars = fee_tinybars
        self.latency_seconds = latency_seconds
        self._shard = shard
        self._realm = realm
        self._next_num = first_entity_num
        self._lock = threading.RLock()
        self._accounts: dict[str, _AccountState] = {}
        self._tokens: dict[str, _TokenState] = {}
        self._topics: dict[str, _TopicState] = {}
        self._seen_transactions: set[str] = set()
        self.transaction_count = 0

    # --- genesis ---

    def _allocate_id(self) -> str:
        with self._lock:
            num = self._next_num
            self._next_num += 1
        return f"{self._shard}.{self._realm}.{num}"

    def create_account(self, key: Key, *, tinybars: int = 0, account_id: Optional[str] = None) -> str:
        """Genesis helper: create a funded account outside any transaction."""
        if tinybars < 0:
            raise BadRequestException("Initial balance must be >= 0")
        with self._lock:
            if account_id is None:
                account_id = self._allocate_id()
            else:
                account_id = validate_entity_id(account_id, kind="account")
                if account_id in self._accounts:
                    raise BadRequestException(f"Account {account_id} already exists")
            self._accounts[account_id] = _AccountState(account_id=account_id, key=key, tinybars=tinybars)
        logger.debug("ledger.sim.account_created account=%s tinybars=%s", account_id, tinybars)
        return account_id

    def seed_account(self, account: "Account", *, tinybars: int) -> str:
        return self.create_account(account.public_key, tinybars=tinybars, account_id=account.account_id)

    # --- queries ---

    async def _network_delay(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    def _account(self, account_id: str) -> _AccountState:
        state = self._accounts.get(account_id)
        if state is None:
            raise NotFoundException(f"Account {account_id} not found", details={"account_id": account_id})
        return state

    async def get_account_balance(self, account_id: str) -> AccountBalance:
        await self._network_delay()
        with self._lock:
            state = self._account(account_id)
            return AccountBalance(account_id=account_id, tinybars=state.tinybars, tokens=dict(state.tokens))

    async def get_token_info(self, token_id: str) -> TokenInfo:
        await self._network_delay()
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None:
                raise NotFoundException(f"Token {token_id} not found", details={"token_id": token_id})
            cfg = token.config
            return TokenInfo(
                token_id=token.token_id,
                name=cfg.name,
                symbol=cfg.symbol,
                decimals=cfg.decimals,
                total_supply=token.total_supply,
                max_supply=cfg.max_supply,
                supply_type=cfg.supply_type,
                treasury_account_id=cfg.treasury_account_id,
                admin_key=cfg.admin_key,
                supply_key=cfg.supply_key,
                memo=cfg.memo,
            )

    async def get_topic_info(self, topic_id: str) -> TopicInfo:
        await self._network_delay()
        with self._lock:
            topic = self._topics.get(topic_id)
            if topic is None:
                raise NotFoundException(f"Topic {topic_id} not found", details={"topic_id": topic_id})
            return TopicInfo(
                topic_id=topic.topic_id,
                memo=topic.memo,
                submit_key=topic.submit_key,
                admin_key=topic.admin_key,
                sequence_number=len(topic.messages),
            )

    async def subscribe_topic(
        self,
        topic_id: str,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        *,
        start_sequence: int = 0,
    ) -> _SimulatedSubscription:
        loop = asyncio.get_running_loop()
        with self._lock:
            topic = self._topics.get(topic_id)
            if topic is None:
                raise NotFoundException(f"Topic {topic_id} not found", details={"topic_id": topic_id})
            sub = _SimulatedSubscription(self, topic_id, on_message, on_error, loop)
            topic.subscribers.append(sub)
            backlog = [m for m in topic.messages if m.sequence_number > start_sequence]
        for message in backlog:
            sub.deliver(message)
        logger.debug("ledger.sim.subscribed topic=%s backlog=%s", topic_id, len(backlog))
        return sub

    def _drop_subscription(self, sub: _SimulatedSubscription) -> None:
        with self._lock:
            topic = self._topics.get(sub.topic_id)
            if topic is not None and sub in topic.subscribers:
                topic.subscribers.remove(sub)

    def subscriber_count(self, topic_id: str) -> int:
        with self._lock:
            topic = self._topics.get(topic_id)
            return len(topic.subscribers) if topic is not None else 0

    # --- transaction pipeline ---

    async def _process(
        self,
        *,
        kind: str,
        payer_account_id: str,
        transaction_id: str,
        body: bytes,
        signatures: Mapping[bytes, bytes],
        validate: Validator,
        apply: Callable[[], dict[str, Any]],
    ) -> TransactionReceipt:
        await self._network_delay()
        with log_duration(logger, f"ledger.sim.{kind}", tx=transaction_id), self._lock:
            if transaction_id in self._seen_transactions:
                raise ReceiptStatusError(ReceiptStatus.DUPLICATE_TRANSACTION.value, transaction_id=transaction_id)

            # Precheck: nothing is recorded and no fee is charged.
            payer = self._accounts.get(payer_account_id)
            if payer is None:
                raise ReceiptStatusError(ReceiptStatus.INVALID_ACCOUNT_ID.value, transaction_id=transaction_id)
            if not payer.key.is_satisfied_by(body, signatures):
                raise ReceiptStatusError(ReceiptStatus.INVALID_SIGNATURE.value, transaction_id=transaction_id)
            if payer.tinybars < self.fee_tinybars:
                raise ReceiptStatusError(
                    ReceiptStatus.INSUFFICIENT_PAYER_BALANCE.value,
                    transaction_id=transaction_id,
                    details={"balance": payer.tinybars, "fee": self.fee_tinybars},
                )

            # Reached consensus: the fee is charged whatever the outcome.
            self._seen_transactions.add(transaction_id)
            self.transaction_count += 1
            payer.tinybars -= self.fee_tinybars

            status = validate(body, signatures)
            if status is not None:
                logger.info(
                    "ledger.sim.rejected kind=%s tx=%s status=%s", kind, transaction_id, status.value
                )
                raise ReceiptStatusError(
                    status.value,
                    transaction_id=transaction_id,
                    details={"charged_fee_tinybars": self.fee_tinybars},
                )

            extras = apply()
            logger.debug("ledger.sim.applied kind=%s tx=%s", kind, transaction_id)
            return TransactionReceipt(
                transaction_id=transaction_id,
                status=ReceiptStatus.SUCCESS,
                charged_fee_tinybars=self.fee_tinybars,
                **extras,
            )

    async def _process_signed_body(
        self,
        *,
        kind: str,
        operator: "Account",
        signers: Sequence[PrivateKey],
        payload: dict[str, Any],
        validate: Validator,
        apply: Callable[[], dict[str, Any]],
    ) -> TransactionReceipt:
        transaction_id = new_transaction_id(operator.account_id)
        body = canonical_json({"type": kind, "transaction_id": transaction_id, "payer": operator.account_id, **payload})
        signatures = signature_map(body, [operator.private_key, *signers])
        return await self._process(
            kind=kind,
            payer_account_id=operator.account_id,
            transaction_id=transaction_id,
            body=body,
            signatures=signatures,
            validate=validate,
            apply=apply,
        )

    # --- tokens ---

    async def create_token(
        self,
        config: TokenConfig,
        *,
        operator: "Account",
        signers: Sequence[PrivateKey] = (),
    ) -> TransactionReceipt:
        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            treasury = self._accounts.get(config.treasury_account_id)
            if treasury is None:
                return ReceiptStatus.INVALID_ACCOUNT_ID
            if not treasury.key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            if config.admin_key is not None and not config.admin_key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            if config.supply_type is TokenSupplyType.FINITE and config.initial_supply > config.max_supply:
                return ReceiptStatus.INVALID_TOKEN_INITIAL_SUPPLY
            return None

        def apply() -> dict[str, Any]:
            token_id = self._allocate_id()
            self._tokens[token_id] = _TokenState(token_id=token_id, config=config, total_supply=config.initial_supply)
            self._accounts[config.treasury_account_id].tokens[token_id] = config.initial_supply
            logger.info(
                "ledger.sim.token_created token=%s symbol=%s supply=%s max=%s",
                token_id,
                config.symbol,
                config.initial_supply,
                config.max_supply,
            )
            return {"token_id": token_id, "total_supply": config.initial_supply}

        return await self._process_signed_body(
            kind="TokenCreate",
            operator=operator,
            signers=signers,
            payload={
                "name": config.name,
                "symbol": config.symbol,
                "decimals": config.decimals,
                "initial_supply": config.initial_supply,
                "max_supply": config.max_supply,
                "treasury": config.treasury_account_id,
                "admin_key": config.admin_key,
                "supply_key": config.supply_key,
            },
            validate=validate,
            apply=apply,
        )

    async def mint_token(
        self,
        token_id: str,
        amount: int,
        *,
        operator: "Account",
        signers: Sequence[PrivateKey] = (),
    ) -> TransactionReceipt:
        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            token = self._tokens.get(token_id)
            if token is None:
                return ReceiptStatus.INVALID_TOKEN_ID
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                return ReceiptStatus.INVALID_TOKEN_MINT_AMOUNT
            supply_key = token.config.supply_key
            if supply_key is None:
                return ReceiptStatus.TOKEN_HAS_NO_SUPPLY_KEY
            if not supply_key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            if (
                token.config.supply_type is TokenSupplyType.FINITE
                and token.total_supply + amount > token.config.max_supply
            ):
                return ReceiptStatus.TOKEN_MAX_SUPPLY_REACHED
            return None

        def apply() -> dict[str, Any]:
            token = self._tokens[token_id]
            token.total_supply += amount
            treasury = self._accounts[token.config.treasury_account_id]
            treasury.tokens[token_id] = treasury.tokens.get(token_id, 0) + amount
            return {"token_id": token_id, "total_supply": token.total_supply}

        return await self._process_signed_body(
            kind="TokenMint",
            operator=operator,
            signers=signers,
            payload={"token_id": token_id, "amount": amount},
            validate=validate,
            apply=apply,
        )

    async def associate_token(
        self,
        account_id: str,
        token_ids: Sequence[str],
        *,
        operator: "Account",
        signers: Sequence[PrivateKey] = (),
    ) -> TransactionReceipt:
        token_ids = list(token_ids)

        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            account = self._accounts.get(account_id)
            if account is None:
                return ReceiptStatus.INVALID_ACCOUNT_ID
            if any(t not in self._tokens for t in token_ids):
                return ReceiptStatus.INVALID_TOKEN_ID
            if not account.key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            if any(t in account.tokens for t in token_ids):
                return ReceiptStatus.TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT
            return None

        def apply() -> dict[str, Any]:
            account = self._accounts[account_id]
            for t in token_ids:
                account.tokens[t] = 0
            return {}

        return await self._process_signed_body(
            kind="TokenAssociate",
            operator=operator,
            signers=signers,
            payload={"account_id": account_id, "token_ids": token_ids},
            validate=validate,
            apply=apply,
        )

    async def submit(self, transaction: TransferTransaction, *, operator: "Account") -> TransactionReceipt:
        if not transaction.is_frozen:
            transaction.freeze_with(operator.account_id)
        transaction.sign(operator.private_key)
        transaction.mark_executed()

        token_legs = transaction.token_legs
        hbar_legs = transaction.hbar_legs
        fee = self.fee_tinybars
        payer_id = transaction.payer_account_id or operator.account_id

        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            if not token_legs and not hbar_legs:
                return ReceiptStatus.EMPTY_TOKEN_TRANSFER_BODY

            touched = {leg.account_id for leg in token_legs} | {a for a, _ in hbar_legs}
            if any(a not in self._accounts for a in touched):
                return ReceiptStatus.INVALID_ACCOUNT_ID
            if any(leg.token_id not in self._tokens for leg in token_legs):
                return ReceiptStatus.INVALID_TOKEN_ID

            per_token: dict[str, int] = {}
            for leg in token_legs:
                per_token[leg.token_id] = per_token.get(leg.token_id, 0) + leg.amount
            if any(total != 0 for total in per_token.values()) or sum(t for _, t in hbar_legs) != 0:
                return ReceiptStatus.TRANSFERS_NOT_ZERO_SUM_FOR_TOKEN

            for leg in token_legs:
                if leg.token_id not in self._accounts[leg.account_id].tokens:
                    return ReceiptStatus.TOKEN_NOT_ASSOCIATED_TO_ACCOUNT

            for account_id in transaction.debited_accounts():
                if not self._accounts[account_id].key.is_satisfied_by(body, sigs):
                    return ReceiptStatus.INVALID_SIGNATURE

            token_delta: dict[tuple[str, str], int] = {}
            for leg in token_legs:
                k = (leg.account_id, leg.token_id)
                token_delta[k] = token_delta.get(k, 0) + leg.amount
            for (account_id, token_id), delta in token_delta.items():
                if self._accounts[account_id].tokens[token_id] + delta < 0:
                    return ReceiptStatus.INSUFFICIENT_TOKEN_BALANCE

            hbar_delta: dict[str, int] = {}
            for account_id, tinybars in hbar_legs:
                hbar_delta[account_id] = hbar_delta.get(account_id, 0) + tinybars
            for account_id, delta in hbar_delta.items():
                # The fee was already deducted from the payer.
                if self._accounts[account_id].tinybars + delta < 0:
                    return ReceiptStatus.INSUFFICIENT_PAYER_BALANCE
            return None

        def apply() -> dict[str, Any]:
            for leg in token_legs:
                tokens = self._accounts[leg.account_id].tokens
                tokens[leg.token_id] += leg.amount
            for account_id, tinybars in hbar_legs:
                self._accounts[account_id].tinybars += tinybars
            logger.info(
                "ledger.sim.transfer tx=%s legs=%s payer=%s fee=%s",
                transaction.transaction_id,
                len(token_legs) + len(hbar_legs),
                payer_id,
                fee,
            )
            return {}

        return await self._process(
            kind="CryptoTransfer",
            payer_account_id=payer_id,
            transaction_id=transaction.transaction_id or "",
            body=transaction.body_bytes,
            signatures=transaction.signatures,
            validate=validate,
            apply=apply,
        )

    # --- topics ---

    async def create_topic(
        self,
        config: TopicConfig,
        *,
        operator: "Account",
        signers: Sequence[PrivateKey] = (),
    ) -> TransactionReceipt:
        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            if config.admin_key is not None and not config.admin_key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            return None

        def apply() -> dict[str, Any]:
            topic_id = self._allocate_id()
            self._topics[topic_id] = _TopicState(
                topic_id=topic_id,
                memo=config.memo,
                submit_key=config.submit_key,
                admin_key=config.admin_key,
            )
            logger.info("ledger.sim.topic_created topic=%s memo=%r", topic_id, config.memo)
            return {"topic_id": topic_id}

        return await self._process_signed_body(
            kind="TopicCreate",
            operator=operator,
            signers=signers,
            payload={"memo": config.memo, "submit_key": config.submit_key, "admin_key": config.admin_key},
            validate=validate,
            apply=apply,
        )

    async def submit_topic_message(
        self,
        topic_id: str,
        message: str | bytes,
        *,
        operator: "Account",
        signers: Sequence[PrivateKey] = (),
    ) -> TransactionReceipt:
        contents = message.encode("utf-8") if isinstance(message, str) else bytes(message)

        def validate(body: bytes, sigs: Mapping[bytes, bytes]) -> Optional[ReceiptStatus]:
            topic = self._topics.get(topic_id)
            if topic is None:
                return ReceiptStatus.INVALID_TOPIC_ID
            if topic.submit_key is not None and not topic.submit_key.is_satisfied_by(body, sigs):
                return ReceiptStatus.INVALID_SIGNATURE
            return None

        def apply() -> dict[str, Any]:
            topic = self._topics[topic_id]
            msg = TopicMessage(
                topic_id=topic_id,
                sequence_number=len(topic.messages) + 1,
                contents=contents,
                consensus_timestamp=datetime.now(timezone.utc),
                payer_account_id=operator.account_id,
            )
            topic.messages.append(msg)
            for sub in list(topic.subscribers):
                sub.deliver(msg)
            return {"topic_id": topic_id, "topic_sequence_number": msg.sequence_number}

        return await self._process_signed_body(
            kind="ConsensusSubmitMessage",
            operator=operator,
            signers=signers,
            payload={"topic_id": topic_id, "message": contents},
            validate=validate,
            apply=apply,
        )
