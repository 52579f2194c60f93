from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Mapping

from ledger_harness.core.keys.crypto import PrivateKey, PublicKey
from ledger_harness.schemas.ledger import AccountCredentials
from ledger_harness.utils.exceptions import PreconditionFailedError
from ledger_harness.utils.validation import validate_entity_id

if TYPE_CHECKING:
    from ledger_harness.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_PARTITION = "default"

ORDINAL_ROLES: dict[str, int] = {"first": 0, "second": 1, "third": 2, "fourth": 3}


@dataclass(frozen=True)
class Account:
    """Account Reference: an account id paired with its authorizing key."""

    account_id: str
    private_key: PrivateKey

    @classmethod
    def from_credentials(cls, creds: AccountCredentials) -> "Account":
        return cls(
            account_id=validate_entity_id(creds.id, kind="account"),
            private_key=PrivateKey.from_string_ed25519(creds.private_key),
        )

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key

    def __str__(self) -> str:
        return self.account_id


class AccountPool:
    """Externally provisioned accounts, indexed by partition and position.

    The pool is read-only: the harness never creates or funds accounts.
    """

    def __init__(
        self,
        partitions: Mapping[str, Iterable[Account]],
        *,
        treasury_index: int = 4,
    ) -> None:
        self._partitions: dict[str, list[Account]] = {
            name: list(accounts) for name, accounts in partitions.items()
        }
        self.treasury_index = treasury_index

    @classmethod
    def from_settings(cls, settings: "Settings") -> "AccountPool":
        partitions = {
            name: [Account.from_credentials(c) for c in creds]
            for name, creds in settings.account_partitions().items()
        }
        logger.debug(
            "harness.pool.loaded partitions=%s",
            {name: len(accounts) for name, accounts in partitions.items()},
        )
        return cls(partitions, treasury_index=settings.TREASURY_ACCOUNT_INDEX)

    @property
    def partitions(self) -> list[str]:
        return sorted(self._partitions)

    def get(self, position: int, *, partition: str = DEFAULT_PARTITION) -> Account:
        accounts = self._partitions.get(partition)
        if accounts is None:
            raise PreconditionFailedError(
                f"Account pool has no partition '{partition}'",
                expected=partition,
                actual=self.partitions,
            )
        if position < 0 or position >= len(accounts):
            raise PreconditionFailedError(
                f"Account pool partition '{partition}' has {len(accounts)} accounts; "
                f"position {position} was requested",
                expected=position + 1,
                actual=len(accounts),
            )
        return accounts[position]

    def role(self, role: str, *, partition: str = DEFAULT_PARTITION) -> Account:
        """Resolve `first`..`fourth` to a pool position."""
        try:
            position = ORDINAL_ROLES[role]
        except KeyError:
            raise PreconditionFailedError(
                f"Unknown account role '{role}'",
                expected=sorted(ORDINAL_ROLES),
                actual=role,
            )
        return self.get(position, partition=partition)

    def treasury(self) -> Account:
        return self.get(self.treasury_index, partition=DEFAULT_PARTITION)
