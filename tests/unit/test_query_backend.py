from typing import Optional

import pytest

from ledger_harness.config import Settings
from ledger_harness.core.harness.assertions import AssertionAdapter
from ledger_harness.core.ledger.mirror import MirrorNodeClient
from ledger_harness.core.ledger.simulated import SimulatedLedger


@pytest.fixture
def mirror_url() -> Optional[str]:
    return None


@pytest.fixture
def network() -> str:
    return "simulated"


@pytest.fixture
def harness_settings(harness_settings: Settings, mirror_url: Optional[str], network: str) -> Settings:
    return harness_settings.model_copy(
        update={
            "NETWORK": network,
            "MIRROR_NODE_URL": mirror_url,
            "MIRROR_POLL_INTERVAL_SECONDS": 0.25,
            "HTTP_TIMEOUT_SECONDS": 3.0,
        }
    )


def test_simulated_network_answers_queries_from_the_ledger(
    ledger_queries, ledger: SimulatedLedger, assertions: AssertionAdapter
) -> None:
    assert ledger_queries is ledger
    assert assertions.queries is ledger


@pytest.mark.parametrize("mirror_url", ["http://mirror.test/"])
def test_mirror_url_routes_queries_to_mirror_node(ledger_queries, assertions: AssertionAdapter) -> None:
    assert isinstance(ledger_queries, MirrorNodeClient)
    assert assertions.queries is ledger_queries
    assert ledger_queries.poll_interval == 0.25
    assert not ledger_queries.closed


@pytest.mark.parametrize("network", ["testnet"])
def test_public_network_derives_mirror_node_url(harness_settings: Settings, ledger_queries) -> None:
    assert harness_settings.mirror_node_url() == "https://testnet.mirrornode.hedera.com"
    assert isinstance(ledger_queries, MirrorNodeClient)
