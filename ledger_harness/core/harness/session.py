from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Coroutine, Optional, TypeVar

if TYPE_CHECKING:
    from ledger_harness.config import Settings
    from ledger_harness.core.harness.accounts import Account, AccountPool
    from ledger_harness.core.harness.assertions import AssertionAdapter
    from ledger_harness.core.harness.context import ScenarioContext
    from ledger_harness.core.harness.fixtures import FixtureProvisioner
    from ledger_harness.core.harness.runner import ScenarioRunner
    from ledger_harness.core.ledger.client import LedgerClient

T = TypeVar("T")

TREASURY_ROLE = "treasury"


@dataclass
class ScenarioSession:
    """Everything one scenario's steps touch, bundled for the step library."""

    settings: "Settings"
    ledger: "LedgerClient"
    pool: "AccountPool"
    context: "ScenarioContext"
    runner: "ScenarioRunner"
    provisioner: "FixtureProvisioner"
    assertions: "AssertionAdapter"

    def run(self, coro: Coroutine[Any, Any, T], *, step: str = "step", timeout: Optional[float] = None) -> T:
        return self.runner.run(coro, step=step, timeout=timeout)

    def bind(self, role: str, *, partition: Optional[str] = None) -> "Account":
        """Take `role` (first..fourth) from a pool partition and record it in the context."""
        account = self.pool.role(role, partition=partition or self.settings.FUNDED_PARTITION)
        self.context.set_account(role, account)
        return account

    def bind_treasury(self) -> "Account":
        if self.context.has_account(TREASURY_ROLE):
            return self.context.account(TREASURY_ROLE)
        account = self.pool.treasury()
        self.context.set_account(TREASURY_ROLE, account)
        return account

    def account(self, role: str) -> "Account":
        return self.context.account(role)

    def bound_accounts(self) -> list["Account"]:
        return [self.context.account(role) for role in self.context.roles]
