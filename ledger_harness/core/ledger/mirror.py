"""Read-only ledger queries against a mirror node REST API."""

from __future__ import annotations

import asyncio
import base64
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from ledger_harness.core.keys.crypto import Key, PublicKey
from ledger_harness.core.ledger.client import ErrorCallback, MessageCallback
from ledger_harness.schemas.ledger import (
    AccountBalance,
    TokenInfo,
    TokenSupplyType,
    TopicInfo,
    TopicMessage,
)
from ledger_harness.utils.exceptions import (
    BadRequestException,
    LedgerHarnessException,
    LedgerTimeoutError,
    NotFoundException,
)
from ledger_harness.utils.observability import log_duration
from ledger_harness.utils.validation import validate_entity_id

logger = logging.getLogger(__name__)


def _parse_key(raw: Any) -> Optional[Key]:
    """Mirror nodes report keys as {"_type": "ED25519", "key": "<hex>"}."""
    if not raw:
        return None
    key_type = str(raw.get("_type") or "").upper()
    if key_type != "ED25519":
        # ECDSA and protobuf-encoded key lists are not modelled; keep the field empty.
        logger.debug("ledger.mirror.unsupported_key type=%s", key_type)
        return None
    return PublicKey.from_string(str(raw.get("key") or ""))


def _parse_consensus_timestamp(value: str) -> datetime:
    # "seconds.nanoseconds"
    seconds = Decimal(value)
    return datetime.fromtimestamp(float(seconds), tz=timezone.utc)


class _PollingSubscription:
    def __init__(self, task: "asyncio.Task[None]") -> None:
        self._task = task
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self._task.done()

    def unsubscribe(self) -> None:
        self._closed = True
        if not self._task.done():
            self._task.cancel()


class MirrorNodeClient:
    """`LedgerQueries` over HTTP.

    Can be used as an async context manager to close the HTTP client:
    ```python
    async with MirrorNodeClient(settings.mirror_node_url()) as mirror:
        balance = await mirror.get_account_balance("0.0.1001")
    ```
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        poll_interval: float = 1.0,
        page_size: int = 25,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.poll_interval = poll_interval
        self.page_size = page_size
        self._polls: set[asyncio.Task[None]] = set()

    async def _get_json(self, path: str, *, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        with log_duration(logger, "ledger.mirror.get", path=path):
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                raise LedgerTimeoutError(f"Mirror node request timed out: {path}", details={"path": path}) from e
            except httpx.HTTPError as e:
                raise LedgerHarnessException(f"Mirror node request failed: {e}", details={"path": path}) from e

        if response.status_code == 404:
            raise NotFoundException(f"Mirror node has no entity at {path}", details={"path": path})
        if response.status_code == 400:
            raise BadRequestException(f"Mirror node rejected {path}", details={"body": response.text[:500]})
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise LedgerHarnessException(
                f"Mirror node returned HTTP {response.status_code} for {path}",
                details={"status_code": response.status_code},
            ) from e
        try:
            return response.json()
        except ValueError as e:
            raise LedgerHarnessException(
                f"Mirror node returned a non-JSON body for {path}",
                details={"path": path, "body": response.text[:500]},
            ) from e

    async def get_account_balance(self, account_id: str) -> AccountBalance:
        account_id = validate_entity_id(account_id, kind="account")
        data = await self._get_json("/api/v1/balances", params={"account.id": account_id})
        rows = data.get("balances") or []
        row = next((r for r in rows if r.get("account") == account_id), None)
        if row is None:
            raise NotFoundException(f"Account {account_id} not found", details={"account_id": account_id})
        tokens = {str(t["token_id"]): int(t["balance"]) for t in row.get("tokens") or []}
        return AccountBalance(account_id=account_id, tinybars=int(row.get("balance") or 0), tokens=tokens)

    async def get_token_info(self, token_id: str) -> TokenInfo:
        token_id = validate_entity_id(token_id, kind="token")
        data = await self._get_json(f"/api/v1/tokens/{token_id}")
        # Numeric fields arrive as strings.
        supply_type = str(data.get("supply_type") or "INFINITE").upper()
        return TokenInfo(
            token_id=str(data.get("token_id") or token_id),
            name=str(data.get("name") or ""),
            symbol=str(data.get("symbol") or ""),
            decimals=int(data.get("decimals") or 0),
            total_supply=int(data.get("total_supply") or 0),
            max_supply=int(data.get("max_supply") or 0),
            supply_type=TokenSupplyType(supply_type),
            treasury_account_id=str(data.get("treasury_account_id") or ""),
            admin_key=_parse_key(data.get("admin_key")),
            supply_key=_parse_key(data.get("supply_key")),
            memo=str(data.get("memo") or ""),
        )

    async def get_topic_info(self, topic_id: str) -> TopicInfo:
        topic_id = validate_entity_id(topic_id, kind="topic")
        data = await self._get_json(f"/api/v1/topics/{topic_id}")
        return TopicInfo(
            topic_id=str(data.get("topic_id") or topic_id),
            memo=str(data.get("memo") or ""),
            submit_key=_parse_key(data.get("submit_key")),
            admin_key=_parse_key(data.get("admin_key")),
        )

    async def fetch_topic_messages(self, topic_id: str, *, after_sequence: int = 0) -> list[TopicMessage]:
        data = await self._get_json(
            f"/api/v1/topics/{topic_id}/messages",
            params={
                "sequencenumber": f"gt:{after_sequence}",
                "order": "asc",
                "limit": self.page_size,
            },
        )
        out: list[TopicMessage] = []
        for row in data.get("messages") or []:
            out.append(
                TopicMessage(
                    topic_id=str(row.get("topic_id") or topic_id),
                    sequence_number=int(row["sequence_number"]),
                    contents=base64.b64decode(row.get("message") or ""),
                    consensus_timestamp=_parse_consensus_timestamp(str(row["consensus_timestamp"])),
                    payer_account_id=row.get("payer_account_id"),
                )
            )
        return out

    async def subscribe_topic(
        self,
        topic_id: str,
        on_message: MessageCallback,
        on_error: ErrorCallback,
        *,
        start_sequence: int = 0,
    ) -> _PollingSubscription:
        topic_id = validate_entity_id(topic_id, kind="topic")

        async def _poll() -> None:
            last = start_sequence
            while True:
                try:
                    messages = await self.fetch_topic_messages(topic_id, after_sequence=last)
                except LedgerHarnessException as exc:
                    logger.warning("ledger.mirror.poll_failed topic=%s error=%s", topic_id, exc.message)
                    on_error(exc)
                    return
                for message in messages:
                    last = max(last, message.sequence_number)
                    on_message(message)
                if len(messages) < self.page_size:
                    await asyncio.sleep(self.poll_interval)

        task = asyncio.get_running_loop().create_task(_poll(), name=f"mirror-poll-{topic_id}")
        self._polls.add(task)
        task.add_done_callback(self._polls.discard)
        logger.debug("ledger.mirror.subscribed topic=%s start_sequence=%s", topic_id, start_sequence)
        return _PollingSubscription(task)

    @property
    def closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        """Stop polling subscriptions, then close the HTTP client."""
        polls = list(self._polls)
        for task in polls:
            task.cancel()
        await asyncio.gather(*polls, return_exceptions=True)
        await self._client.aclose()

    async def __aenter__(self) -> "MirrorNodeClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
