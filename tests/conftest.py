"""
Ledger harness: pytest fixtures and configuration.

Provides:
- Deterministic Ed25519 account pools
- A SimulatedLedger seeded with those pools
- Settings wired for fast, offline runs
"""
import os

import pytest

from ledger_harness.config import Settings
from ledger_harness.core.harness.accounts import Account, AccountPool
from ledger_harness.core.keys.crypto import deterministic_private_key
from ledger_harness.core.ledger.simulated import SimulatedLedger
from ledger_harness.schemas.ledger import AccountCredentials
from ledger_harness.utils.validation import hbar_to_tinybars

pytest_plugins = ["ledger_harness.pytest_plugin"]

# =============================================================================
# Constants
# =============================================================================
TEST_SEED = os.environ.get("TEST_SEED", "2025-ledger-test")

FUNDED_HBAR = 100
TREASURY_HBAR = 1_000
ZERO_BALANCE_PARTITION = "zero_balance"


# =============================================================================
# Deterministic Accounts
# =============================================================================
def deterministic_credentials(seed: str, index: int, *, first_num: int = 1001) -> AccountCredentials:
    """
    Account credentials derived from `seed:index`.

    Index 0..3 play first..fourth, index 4 is the treasury.
    """
    key = deterministic_private_key(seed, index)
    return AccountCredentials(id=f"0.0.{first_num + index}", private_key=key.to_string_raw())


@pytest.fixture(scope="session")
def funded_credentials() -> list[AccountCredentials]:
    return [deterministic_credentials(TEST_SEED, i) for i in range(5)]


@pytest.fixture(scope="session")
def zero_balance_credentials() -> list[AccountCredentials]:
    return [deterministic_credentials(f"{TEST_SEED}:zero", i, first_num=2001) for i in range(4)]


# =============================================================================
# Harness wiring
# =============================================================================
@pytest.fixture
def harness_settings(funded_credentials, zero_balance_credentials) -> Settings:
    return Settings(
        ENV="test",
        ACCOUNTS=funded_credentials,
        ACCOUNT_PARTITIONS={ZERO_BALANCE_PARTITION: zero_balance_credentials},
        EXACT_BALANCE_PARTITION=ZERO_BALANCE_PARTITION,
        STEP_TIMEOUT_SECONDS=5.0,
        SUBSCRIPTION_TIMEOUT_SECONDS=2.0,
    )


@pytest.fixture
def account_pool(harness_settings: Settings) -> AccountPool:
    return AccountPool.from_settings(harness_settings)


@pytest.fixture
def ledger(harness_settings: Settings, account_pool: AccountPool) -> SimulatedLedger:
    """Simulated network holding every pool account at its genesis balance."""
    sim = SimulatedLedger(fee_tinybars=harness_settings.NETWORK_FEE_TINYBARS)
    for role in ("first", "second", "third", "fourth"):
        sim.seed_account(account_pool.role(role), tinybars=hbar_to_tinybars(FUNDED_HBAR))
        sim.seed_account(account_pool.role(role, partition=ZERO_BALANCE_PARTITION), tinybars=0)
    sim.seed_account(account_pool.treasury(), tinybars=hbar_to_tinybars(TREASURY_HBAR))
    return sim


@pytest.fixture
def first(account_pool: AccountPool) -> Account:
    return account_pool.role("first")


@pytest.fixture
def second(account_pool: AccountPool) -> Account:
    return account_pool.role("second")


@pytest.fixture
def treasury(account_pool: AccountPool) -> Account:
    return account_pool.treasury()
