import json

import pytest


def test_settings_guardrail_prod_rejects_empty_account_pool() -> None:
    from ledger_harness.config import Settings

    with pytest.raises(RuntimeError, match=r"account pool"):
        Settings(ENV="prod", ACCOUNTS=[], ACCOUNT_PARTITIONS={}, ACCOUNTS_FILE=None)


def test_settings_guardrail_rejects_non_positive_step_timeout() -> None:
    from ledger_harness.config import Settings

    with pytest.raises(RuntimeError, match=r"STEP_TIMEOUT_SECONDS"):
        Settings(ENV="test", STEP_TIMEOUT_SECONDS=0)


def test_settings_guardrail_rejects_non_positive_subscription_timeout() -> None:
    from ledger_harness.config import Settings

    with pytest.raises(RuntimeError, match=r"SUBSCRIPTION_TIMEOUT_SECONDS"):
        Settings(ENV="test", SUBSCRIPTION_TIMEOUT_SECONDS=-1)


def test_settings_guardrail_test_allows_empty_pool() -> None:
    from ledger_harness.config import Settings

    Settings(ENV="test", ACCOUNTS=[], ACCOUNT_PARTITIONS={})


def test_settings_prod_accepts_configured_pool(funded_credentials) -> None:
    from ledger_harness.config import Settings

    s = Settings(ENV="prod", ACCOUNTS=funded_credentials)
    assert list(s.account_partitions()) == ["default"]


def test_settings_accounts_file_list_is_default_partition(tmp_path, funded_credentials) -> None:
    from ledger_harness.config import Settings

    path = tmp_path / "accounts.json"
    path.write_text(
        json.dumps([{"id": c.id, "privateKey": c.private_key} for c in funded_credentials]),
        encoding="utf-8",
    )

    s = Settings(ENV="test", ACCOUNTS=[], ACCOUNT_PARTITIONS={}, ACCOUNTS_FILE=path)
    partitions = s.account_partitions()

    assert list(partitions) == ["default"]
    assert [c.id for c in partitions["default"]] == [c.id for c in funded_credentials]


def test_settings_accounts_file_overrides_named_partition(tmp_path, funded_credentials, zero_balance_credentials) -> None:
    from ledger_harness.config import Settings

    path = tmp_path / "accounts.json"
    path.write_text(
        json.dumps({"zero_balance": [{"id": c.id, "private_key": c.private_key} for c in zero_balance_credentials]}),
        encoding="utf-8",
    )

    s = Settings(
        ENV="test",
        ACCOUNTS=funded_credentials,
        ACCOUNT_PARTITIONS={"zero_balance": funded_credentials[:1]},
        ACCOUNTS_FILE=path,
    )
    partitions = s.account_partitions()

    assert sorted(partitions) == ["default", "zero_balance"]
    assert len(partitions["zero_balance"]) == len(zero_balance_credentials)


def test_settings_guardrail_rejects_unknown_network() -> None:
    from ledger_harness.config import Settings

    with pytest.raises(RuntimeError, match=r"NETWORK"):
        Settings(ENV="test", NETWORK="devnet")


def test_settings_mirror_node_url_defaults_to_simulated_queries() -> None:
    from ledger_harness.config import Settings

    assert Settings(ENV="test").mirror_node_url() is None
    assert Settings(ENV="test", NETWORK="previewnet").mirror_node_url() == "https://previewnet.mirrornode.hedera.com"
    assert Settings(ENV="test", MIRROR_NODE_URL="http://localhost:5551").mirror_node_url() == "http://localhost:5551"
