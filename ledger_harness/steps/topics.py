"""Step definitions for consensus topic scenarios."""

from __future__ import annotations

from pytest_bdd import given, parsers, then, when

from ledger_harness.core.harness.session import ScenarioSession
from ledger_harness.schemas.ledger import TransactionReceipt
from ledger_harness.utils.exceptions import PreconditionFailedError


@given(parsers.parse("a first account with more than {hbars:d} hbars"))
def first_account_with_hbars(harness: ScenarioSession, hbars: int) -> None:
    account = harness.bind("first")
    harness.run(harness.provisioner.ensure_minimum_balance(account, hbars), step="first account balance")


@given(parsers.parse("A second account with more than {hbars:d} hbars"))
def second_account_with_hbars(harness: ScenarioSession, hbars: int) -> None:
    account = harness.bind("second")
    harness.run(harness.provisioner.ensure_minimum_balance(account, hbars), step="second account balance")


@given(parsers.parse("A {threshold:d} of {total:d} threshold key with the first and second account"))
def threshold_key(harness: ScenarioSession, threshold: int, total: int) -> None:
    members = [harness.account("first"), harness.account("second")]
    if total != len(members):
        raise PreconditionFailedError(
            f"A threshold key over the first and second account has {len(members)} members, not {total}",
            expected=total,
            actual=len(members),
        )
    harness.provisioner.create_threshold_key(members, threshold)


@when(parsers.parse('A topic is created with the memo "{memo}" with the first account as the submit key'))
def topic_with_account_submit_key(harness: ScenarioSession, memo: str) -> None:
    first = harness.account("first")
    harness.run(
        harness.provisioner.create_topic(first, memo, submit_key=first.public_key),
        step="create topic",
    )


@when(parsers.parse('A topic is created with the memo "{memo}" with the threshold key as the submit key'))
def topic_with_threshold_submit_key(harness: ScenarioSession, memo: str) -> None:
    harness.run(
        harness.provisioner.create_topic(harness.account("first"), memo, submit_key=harness.context.threshold_key),
        step="create topic",
    )


async def _publish(harness: ScenarioSession, message: str) -> TransactionReceipt:
    # Every bound account that is part of the submit key signs.
    info = await harness.ledger.get_topic_info(harness.context.topic_id)
    members = info.submit_key.public_keys() if info.submit_key is not None else []
    signers = [a for a in harness.bound_accounts() if a.public_key in members]
    return await harness.provisioner.publish_message(harness.account("first"), message, signers=signers)


@when(parsers.parse('The message "{message}" is published to the topic'))
def publish_message(harness: ScenarioSession, message: str) -> None:
    harness.run(_publish(harness, message), step="publish message")
    harness.assertions.assert_receipt_succeeded()


@then(parsers.parse('The message "{message}" is received by the topic and can be printed to the console'))
def message_received(harness: ScenarioSession, message: str) -> None:
    received = harness.run(
        harness.assertions.assert_topic_message_received(message),
        step="receive message",
        timeout=harness.settings.SUBSCRIPTION_TIMEOUT_SECONDS + 1,
    )
    print(f"[{received.topic_id} #{received.sequence_number}] {received.text}")
