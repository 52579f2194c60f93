import logging

import pytest

from ledger_harness.core.harness.context import ScenarioContext, ScenarioPhase
from ledger_harness.core.harness.fixtures import FixtureProvisioner, fee_snapshot_name, htt_token_config
from ledger_harness.core.ledger.simulated import SimulatedLedger
from ledger_harness.schemas.ledger import ReceiptStatus
from ledger_harness.utils.exceptions import ContextFieldMissingError, PreconditionFailedError, ReceiptStatusError


@pytest.mark.asyncio
async def test_minimum_balance_is_strictly_greater(provisioner: FixtureProvisioner, first) -> None:
    # Pool accounts start at exactly 100 hbar.
    assert await provisioner.ensure_minimum_balance(first, 99) == 100

    with pytest.raises(PreconditionFailedError) as exc_info:
        await provisioner.ensure_minimum_balance(first, 100)
    assert "Expected >100" in exc_info.value.message
    assert exc_info.value.actual == "100"


@pytest.mark.asyncio
async def test_exact_balance_is_checked_not_funded(
    provisioner: FixtureProvisioner, ledger: SimulatedLedger, account_pool
) -> None:
    broke = account_pool.role("third", partition="zero_balance")
    await provisioner.ensure_exact_balance(broke, 0)

    with pytest.raises(PreconditionFailedError):
        await provisioner.ensure_exact_balance(broke, 5)
    # No top-up happened.
    assert (await ledger.get_account_balance(broke.account_id)).tinybars == 0


@pytest.mark.asyncio
async def test_create_token_records_id_and_verifies_supply(
    provisioner: FixtureProvisioner, scenario_context: ScenarioContext, treasury
) -> None:
    token_id = await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=1000, max_supply=1000))

    assert scenario_context.token_id == token_id
    assert scenario_context.last_receipt.status is ReceiptStatus.SUCCESS
    assert scenario_context.phase is ScenarioPhase.FIXTURES_APPLIED


@pytest.mark.asyncio
async def test_ensure_associated_tolerates_existing_association(
    provisioner: FixtureProvisioner, ledger: SimulatedLedger, treasury, first
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=10))
    before = (await ledger.get_account_balance(first.account_id)).tinybars

    assert await provisioner.ensure_associated(first, payer=treasury) is True
    assert await provisioner.ensure_associated(first, payer=treasury) is False
    # The payer covered the fee.
    assert (await ledger.get_account_balance(first.account_id)).tinybars == before


@pytest.mark.asyncio
async def test_token_holding_disburses_once_per_account(
    provisioner: FixtureProvisioner, ledger: SimulatedLedger, treasury, first, caplog: pytest.LogCaptureFixture
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=500))
    count_after_create = ledger.transaction_count

    with caplog.at_level(logging.INFO, logger="ledger_harness"):
        assert await provisioner.ensure_token_holding(first, 100, treasury=treasury) is True
        assert await provisioner.ensure_token_holding(first, 100, treasury=treasury) is False

    # One association plus one transfer.
    assert ledger.transaction_count == count_after_create + 2
    assert (await ledger.get_account_balance(first.account_id)).token_balance(provisioner.context.token_id) == 100
    deposits = [r for r in caplog.records if "harness.fixture.deposit" in r.getMessage()]
    assert len(deposits) == 1


@pytest.mark.asyncio
async def test_token_holding_verification_fails_on_drift(
    provisioner: FixtureProvisioner, treasury, first
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=500))
    await provisioner.ensure_token_holding(first, 100, treasury=treasury)

    # Guard already spent: a different amount is verified, not disbursed.
    with pytest.raises(PreconditionFailedError) as exc_info:
        await provisioner.ensure_token_holding(first, 50, treasury=treasury)
    assert (exc_info.value.expected, exc_info.value.actual) == (50, 100)


@pytest.mark.asyncio
async def test_exact_balance_accounts_keep_hbar_through_disbursement(
    provisioner: FixtureProvisioner, account_pool, treasury
) -> None:
    broke = account_pool.role("second", partition="zero_balance")
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=500))

    await provisioner.ensure_token_holding(broke, 100, treasury=treasury)

    assert await provisioner.ensure_exact_balance(broke, 0) == 0


@pytest.mark.asyncio
async def test_submit_pending_snapshots_payer_and_consumes_transaction(
    provisioner: FixtureProvisioner, scenario_context: ScenarioContext, ledger: SimulatedLedger, treasury, first, second
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=500))
    await provisioner.ensure_token_holding(first, 100, treasury=treasury)
    await provisioner.ensure_associated(second, payer=treasury)
    before = (await ledger.get_account_balance(first.account_id)).tinybars

    provisioner.build_transfer([(first, -10), (second, 10)], payer=first, signers=[first])
    receipt = await provisioner.submit_pending(first)

    assert receipt.status is ReceiptStatus.SUCCESS
    assert scenario_context.balance_snapshot(fee_snapshot_name(first.account_id)) == before
    with pytest.raises(ContextFieldMissingError):
        scenario_context.pending_transaction
    token_id = scenario_context.token_id
    assert (await ledger.get_account_balance(first.account_id)).token_balance(token_id) == 90
    assert (await ledger.get_account_balance(second.account_id)).token_balance(token_id) == 10


@pytest.mark.asyncio
async def test_multi_party_transfer_needs_every_debited_signature(
    provisioner: FixtureProvisioner, ledger: SimulatedLedger, account_pool, treasury, first, second
) -> None:
    third = account_pool.role("third")
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=1000))
    for account in (first, second):
        await provisioner.ensure_token_holding(account, 100, treasury=treasury)
    await provisioner.ensure_associated(third, payer=treasury)
    legs = [(first, -10), (second, -10), (third, 20)]

    provisioner.build_transfer(legs, payer=first, signers=[first])
    with pytest.raises(ReceiptStatusError) as exc_info:
        await provisioner.submit_pending(first)
    assert exc_info.value.status == ReceiptStatus.INVALID_SIGNATURE.value

    provisioner.build_transfer(legs, payer=first, signers=[second, first])
    receipt = await provisioner.submit_pending(first)

    assert receipt.status is ReceiptStatus.SUCCESS
    token_id = provisioner.context.token_id
    assert (await ledger.get_account_balance(third.account_id)).token_balance(token_id) == 20
