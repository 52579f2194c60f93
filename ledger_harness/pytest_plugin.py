"""pytest wiring for ledger scenarios.

Enable it from a root ``conftest.py``::

    pytest_plugins = ["ledger_harness.pytest_plugin"]

Each scenario gets a fresh `ScenarioContext` and its own event loop. The
`ledger` fixture defaults to an empty `SimulatedLedger`; suites override it to
seed accounts or to plug in another `LedgerClient`.
"""

from __future__ import annotations

import logging
from typing import Iterator

import pytest

from ledger_harness.config import Settings, get_settings
from ledger_harness.core.harness.accounts import AccountPool
from ledger_harness.core.harness.assertions import AssertionAdapter
from ledger_harness.core.harness.context import ScenarioContext
from ledger_harness.core.harness.fixtures import FixtureProvisioner
from ledger_harness.core.harness.runner import ScenarioRunner
from ledger_harness.core.harness.session import ScenarioSession
from ledger_harness.core.ledger.client import LedgerClient, LedgerQueries
from ledger_harness.core.ledger.mirror import MirrorNodeClient
from ledger_harness.core.ledger.simulated import SimulatedLedger

pytest_plugins = ["ledger_harness.steps.topics", "ledger_harness.steps.tokens"]

logger = logging.getLogger(__name__)


def pytest_configure(config: pytest.Config) -> None:
    level = get_settings().LOG_LEVEL.upper()
    logging.getLogger("ledger_harness").setLevel(level)
    logger.debug("harness.plugin.configured log_level=%s", level)


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo) -> Iterator[None]:
    outcome = yield
    report = outcome.get_result()
    setattr(item, f"ledger_report_{report.when}", report)


@pytest.fixture
def harness_settings() -> Settings:
    return get_settings()


@pytest.fixture
def ledger(harness_settings: Settings) -> LedgerClient:
    return SimulatedLedger(fee_tinybars=harness_settings.NETWORK_FEE_TINYBARS)


@pytest.fixture
def account_pool(harness_settings: Settings) -> AccountPool:
    return AccountPool.from_settings(harness_settings)


@pytest.fixture
def scenario_context(request: pytest.FixtureRequest) -> ScenarioContext:
    return ScenarioContext(request.node.name)


@pytest.fixture
def scenario_runner(
    request: pytest.FixtureRequest,
    scenario_context: ScenarioContext,
    harness_settings: Settings,
) -> Iterator[ScenarioRunner]:
    runner = ScenarioRunner(scenario_context, step_timeout=harness_settings.STEP_TIMEOUT_SECONDS)
    try:
        yield runner
    finally:
        report = getattr(request.node, "ledger_report_call", None)
        runner.close(passed=bool(report is not None and report.passed))


@pytest.fixture
def ledger_queries(
    request: pytest.FixtureRequest,
    harness_settings: Settings,
    ledger: LedgerClient,
) -> Iterator[LedgerQueries]:
    """Read side used by assertions.

    A configured mirror node answers queries; otherwise the `ledger` fixture
    does. Transactions always go through `ledger`, so a live suite overrides
    that fixture with its SDK client.
    """
    url = harness_settings.mirror_node_url()
    if url is None:
        yield ledger
        return

    runner: ScenarioRunner = request.getfixturevalue("scenario_runner")
    mirror = MirrorNodeClient(
        url,
        timeout=harness_settings.HTTP_TIMEOUT_SECONDS,
        poll_interval=harness_settings.MIRROR_POLL_INTERVAL_SECONDS,
    )
    logger.info("harness.plugin.mirror_node url=%s network=%s", url, harness_settings.NETWORK)
    try:
        yield mirror
    finally:
        if not runner.closed:
            runner.run(mirror.aclose(), step="close mirror node client")


@pytest.fixture
def provisioner(ledger: LedgerClient, scenario_context: ScenarioContext) -> FixtureProvisioner:
    return FixtureProvisioner(ledger, scenario_context)


@pytest.fixture
def assertions(
    ledger_queries: LedgerQueries,
    scenario_context: ScenarioContext,
    harness_settings: Settings,
) -> AssertionAdapter:
    return AssertionAdapter(
        ledger_queries,
        scenario_context,
        subscription_timeout=harness_settings.SUBSCRIPTION_TIMEOUT_SECONDS,
    )


@pytest.fixture
def harness(
    harness_settings: Settings,
    ledger: LedgerClient,
    account_pool: AccountPool,
    scenario_context: ScenarioContext,
    scenario_runner: ScenarioRunner,
    provisioner: FixtureProvisioner,
    assertions: AssertionAdapter,
) -> ScenarioSession:
    return ScenarioSession(
        settings=harness_settings,
        ledger=ledger,
        pool=account_pool,
        context=scenario_context,
        runner=scenario_runner,
        provisioner=provisioner,
        assertions=assertions,
    )
