import pytest

from ledger_harness.core.harness.assertions import AssertionAdapter
from ledger_harness.core.harness.context import ScenarioContext, ScenarioPhase
from ledger_harness.core.harness.fixtures import FixtureProvisioner, fee_snapshot_name, htt_token_config
from ledger_harness.core.ledger.simulated import SimulatedLedger
from ledger_harness.schemas.ledger import ReceiptStatus
from ledger_harness.utils.exceptions import (
    AssertionMismatchError,
    BadRequestException,
    ContextFieldMissingError,
    ExpectedFailureMissingError,
    LedgerTimeoutError,
    ReceiptStatusError,
)


@pytest.mark.asyncio
async def test_hbar_comparisons_are_exact(assertions: AssertionAdapter, first) -> None:
    await assertions.assert_hbar_equals(first, 100)
    await assertions.assert_hbar_greater_than(first, "99.99999999")

    with pytest.raises(AssertionMismatchError) as exc_info:
        await assertions.assert_hbar_equals(first, "100.00000001")
    assert exc_info.value.code == "H003"
    with pytest.raises(AssertionMismatchError):
        await assertions.assert_hbar_greater_than(first, 100)


@pytest.mark.asyncio
async def test_token_metadata_assertions(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, treasury, first
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=1000, max_supply=1000))

    await assertions.assert_token_name("Test Token")
    await assertions.assert_token_symbol("HTT")
    await assertions.assert_token_decimals(2)
    await assertions.assert_total_supply(1000)
    await assertions.assert_max_supply(1000)
    await assertions.assert_token_admin_key(treasury)

    with pytest.raises(AssertionMismatchError) as exc_info:
        await assertions.assert_token_admin_key(first)
    assert exc_info.value.expected == first.public_key


@pytest.mark.asyncio
async def test_token_balance_of_unassociated_account_is_a_mismatch(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, treasury, first
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=10))

    with pytest.raises(AssertionMismatchError, match="not associated"):
        await assertions.assert_token_balance(first, 0)
    await assertions.assert_token_balance(treasury, 10)


@pytest.mark.asyncio
async def test_assert_fails_converts_rejection_into_pass(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, treasury
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=1000, max_supply=1000))

    exc = await assertions.assert_fails(
        provisioner.mint(treasury, 1),
        expected_status=ReceiptStatus.TOKEN_MAX_SUPPLY_REACHED,
    )

    assert isinstance(exc, ReceiptStatusError)
    await assertions.assert_total_supply(1000)


@pytest.mark.asyncio
async def test_assert_fails_reports_unexpected_success(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, treasury
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury))

    with pytest.raises(ExpectedFailureMissingError):
        await assertions.assert_fails(provisioner.mint(treasury, 1))


@pytest.mark.asyncio
async def test_assert_fails_does_not_accept_timeouts(assertions: AssertionAdapter) -> None:
    async def slow() -> None:
        raise LedgerTimeoutError("no receipt")

    with pytest.raises(LedgerTimeoutError):
        await assertions.assert_fails(slow())


@pytest.mark.asyncio
async def test_assert_fails_lets_unset_token_id_fail_loudly(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, scenario_context: ScenarioContext, treasury
) -> None:
    with pytest.raises(ContextFieldMissingError, match="token_id"):
        await assertions.assert_fails(provisioner.mint(treasury, 1))
    assert scenario_context.phase is not ScenarioPhase.ASSERTIONS_RUN


@pytest.mark.asyncio
async def test_assert_fails_lets_invalid_input_fail_loudly(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, ledger: SimulatedLedger, treasury
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury))
    submitted = ledger.transaction_count

    with pytest.raises(BadRequestException):
        await assertions.assert_fails(provisioner.mint(treasury, 0))
    assert ledger.transaction_count == submitted


@pytest.mark.asyncio
async def test_assert_fails_checks_expected_status(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, treasury
) -> None:
    await provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=1, max_supply=1))

    with pytest.raises(AssertionMismatchError):
        await assertions.assert_fails(
            provisioner.mint(treasury, 1),
            expected_status=ReceiptStatus.INVALID_SIGNATURE,
        )


@pytest.mark.asyncio
async def test_fee_payment_is_a_strict_decrease(
    assertions: AssertionAdapter, scenario_context: ScenarioContext, ledger: SimulatedLedger, first
) -> None:
    balance = (await ledger.get_account_balance(first.account_id)).tinybars
    scenario_context.record_balance(fee_snapshot_name(first.account_id), balance)

    with pytest.raises(AssertionMismatchError, match="did not decrease"):
        await assertions.assert_hbar_decreased(first)

    scenario_context.record_balance(fee_snapshot_name(first.account_id), balance + 1)
    assert await assertions.assert_hbar_decreased(first) == 1


@pytest.mark.asyncio
async def test_topic_message_received_and_subscription_closed(
    assertions: AssertionAdapter,
    provisioner: FixtureProvisioner,
    scenario_context: ScenarioContext,
    ledger: SimulatedLedger,
    first,
) -> None:
    await provisioner.create_topic(first, "memo", submit_key=first.public_key)
    await provisioner.publish_message(first, "Hello World")

    message = await assertions.assert_topic_message_received("Hello World", timeout=1)

    assert message.sequence_number == 1
    assert scenario_context.open_subscriptions == []
    assert ledger.subscriber_count(scenario_context.topic_id) == 0
    await assertions.assert_topic_memo("memo")


@pytest.mark.asyncio
async def test_topic_message_mismatch_still_closes_subscription(
    assertions: AssertionAdapter,
    provisioner: FixtureProvisioner,
    scenario_context: ScenarioContext,
    ledger: SimulatedLedger,
    first,
) -> None:
    await provisioner.create_topic(first, "memo")
    await provisioner.publish_message(first, "something else")

    with pytest.raises(AssertionMismatchError):
        await assertions.assert_topic_message_received("Hello World", timeout=1)
    assert ledger.subscriber_count(scenario_context.topic_id) == 0


@pytest.mark.asyncio
async def test_receipt_assertion_reads_last_receipt(
    assertions: AssertionAdapter, provisioner: FixtureProvisioner, first
) -> None:
    await provisioner.create_topic(first, "memo")
    assertions.assert_receipt_succeeded()
