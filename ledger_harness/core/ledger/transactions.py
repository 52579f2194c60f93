from __future__ import annotations

import itertools
import threading
import time
from types import MappingProxyType
from typing import Mapping, Optional

from ledger_harness.core.keys.canonical import canonical_json
from ledger_harness.core.keys.crypto import PrivateKey
from ledger_harness.schemas.ledger import TokenTransferLeg
from ledger_harness.utils.exceptions import BadRequestException, ConflictException
from ledger_harness.utils.validation import validate_entity_id

_tx_seq = itertools.count()
_tx_seq_lock = threading.Lock()


def new_transaction_id(payer_account_id: str) -> str:
    """`payer@seconds.nanos`; nanos are bumped so ids stay unique within a process."""
    with _tx_seq_lock:
        bump = next(_tx_seq)
    now_ns = time.time_ns() + bump
    seconds, nanos = divmod(now_ns, 1_000_000_000)
    return f"{payer_account_id}@{seconds}.{nanos:09d}"


class TransferTransaction:
    """Composable multi-leg transfer.

    Lifecycle: add legs -> `freeze_with(payer)` -> `sign(key)` (any number of
    times) -> submitted once through a ledger client. After freezing the body
    bytes never change, so every signature covers the same payload.
    """

    def __init__(self, *, memo: str = "") -> None:
        self.memo = memo
        self._token_legs: list[TokenTransferLeg] = []
        self._hbar_legs: list[tuple[str, int]] = []
        self._body: Optional[bytes] = None
        self._signatures: dict[bytes, bytes] = {}
        self.transaction_id: Optional[str] = None
        self.payer_account_id: Optional[str] = None
        self._executed = False

    def _ensure_mutable(self) -> None:
        if self._body is not None:
            raise ConflictException(
                "Transaction is frozen; legs can no longer be added",
                details={"transaction_id": self.transaction_id},
            )

    def add_token_transfer(self, token_id: str, account_id: str, amount: int) -> "TransferTransaction":
        self._ensure_mutable()
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise BadRequestException("Transfer leg amount must be a non-zero integer", details={"amount": amount})
        self._token_legs.append(
            TokenTransferLeg(
                token_id=validate_entity_id(token_id, kind="token"),
                account_id=validate_entity_id(account_id, kind="account"),
                amount=amount,
            )
        )
        return self

    def add_hbar_transfer(self, account_id: str, tinybars: int) -> "TransferTransaction":
        self._ensure_mutable()
        if isinstance(tinybars, bool) or not isinstance(tinybars, int) or tinybars == 0:
            raise BadRequestException("Hbar leg must be a non-zero tinybar integer", details={"tinybars": tinybars})
        self._hbar_legs.append((validate_entity_id(account_id, kind="account"), tinybars))
        return self

    def freeze_with(self, payer_account_id: str) -> "TransferTransaction":
        if self._body is not None:
            return self
        if not self._token_legs and not self._hbar_legs:
            raise BadRequestException("Cannot freeze a transfer without legs")

        payer = validate_entity_id(payer_account_id, kind="account")
        self.payer_account_id = payer
        self.transaction_id = new_transaction_id(payer)
        self._body = canonical_json(
            {
                "type": "CryptoTransfer",
                "transaction_id": self.transaction_id,
                "payer": payer,
                "memo": self.memo,
                "token_transfers": self._token_legs,
                "hbar_transfers": [{"account_id": a, "tinybars": t} for a, t in self._hbar_legs],
            }
        )
        return self

    def sign(self, private_key: PrivateKey) -> "TransferTransaction":
        if self._body is None:
            raise ConflictException("Transaction must be frozen before it is signed")
        self._signatures[private_key.public_key.to_bytes()] = private_key.sign(self._body)
        return self

    @property
    def is_frozen(self) -> bool:
        return self._body is not None

    @property
    def body_bytes(self) -> bytes:
        if self._body is None:
            raise ConflictException("Transaction is not frozen")
        return self._body

    @property
    def signatures(self) -> Mapping[bytes, bytes]:
        return MappingProxyType(self._signatures)

    @property
    def token_legs(self) -> list[TokenTransferLeg]:
        return list(self._token_legs)

    @property
    def hbar_legs(self) -> list[tuple[str, int]]:
        return list(self._hbar_legs)

    @property
    def executed(self) -> bool:
        return self._executed

    def debited_accounts(self) -> set[str]:
        debited = {leg.account_id for leg in self._token_legs if leg.amount < 0}
        debited.update(account for account, tinybars in self._hbar_legs if tinybars < 0)
        return debited

    def mark_executed(self) -> None:
        """Single-shot guard: a transaction reaches the ledger at most once."""
        if self._executed:
            raise ConflictException(
                "Transaction was already submitted",
                details={"transaction_id": self.transaction_id},
            )
        self._executed = True

    def __repr__(self) -> str:
        return (
            f"TransferTransaction(id={self.transaction_id!r}, legs={len(self._token_legs) + len(self._hbar_legs)}, "
            f"signatures={len(self._signatures)})"
        )
