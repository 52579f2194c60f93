"""Step definitions for fungible token scenarios.

The first account is the fee payer of every transfer these phrases build;
the treasury comes from the pool's treasury position.
"""

from __future__ import annotations

from pytest_bdd import given, parsers, then, when

from ledger_harness.core.harness.fixtures import htt_token_config
from ledger_harness.core.harness.session import ScenarioSession

HTT_DECIMALS = 2


# --- token creation ---


@given(parsers.parse("A Hedera account with more than {hbars:d} hbar"))
def treasury_with_hbars(harness: ScenarioSession, hbars: int) -> None:
    treasury = harness.bind_treasury()
    harness.run(harness.provisioner.ensure_minimum_balance(treasury, hbars), step="treasury balance")


@when("I create a token named Test Token (HTT)")
def create_token(harness: ScenarioSession) -> None:
    treasury = harness.bind_treasury()
    config = htt_token_config(treasury, decimals=HTT_DECIMALS)
    harness.run(harness.provisioner.create_token(treasury, config), step="create token")


@when(parsers.parse("I create a fixed supply token named Test Token (HTT) with {supply:d} tokens"))
def create_fixed_supply_token(harness: ScenarioSession, supply: int) -> None:
    treasury = harness.bind_treasury()
    config = htt_token_config(treasury, initial_supply=supply, max_supply=supply, decimals=HTT_DECIMALS)
    harness.run(harness.provisioner.create_token(treasury, config), step="create fixed supply token")


@then(parsers.parse('The token has the name "{name}"'))
def token_name(harness: ScenarioSession, name: str) -> None:
    harness.run(harness.assertions.assert_token_name(name), step="token name")


@then(parsers.parse('The token has the symbol "{symbol}"'))
def token_symbol(harness: ScenarioSession, symbol: str) -> None:
    harness.run(harness.assertions.assert_token_symbol(symbol), step="token symbol")


@then(parsers.parse("The token has {decimals:d} decimals"))
def token_decimals(harness: ScenarioSession, decimals: int) -> None:
    harness.run(harness.assertions.assert_token_decimals(decimals), step="token decimals")


@then("The token is owned by the account")
def token_owned_by_treasury(harness: ScenarioSession) -> None:
    harness.run(harness.assertions.assert_token_admin_key(harness.bind_treasury()), step="token owner")


async def _mint_and_verify(harness: ScenarioSession, amount: int) -> None:
    treasury = harness.bind_treasury()
    token_id = harness.context.token_id
    supply_before = (await harness.ledger.get_token_info(token_id)).total_supply
    held_before = (await harness.ledger.get_account_balance(treasury.account_id)).token_balance(token_id) or 0

    await harness.provisioner.mint(treasury, amount)
    harness.assertions.assert_receipt_succeeded()
    await harness.assertions.assert_token_balance(treasury, held_before + amount)
    await harness.assertions.assert_total_supply(supply_before + amount)


@then(parsers.parse("An attempt to mint {amount:d} additional tokens succeeds"))
def mint_succeeds(harness: ScenarioSession, amount: int) -> None:
    harness.run(_mint_and_verify(harness, amount), step="mint")


@then(parsers.parse("The total supply of the token is {supply:d}"))
def total_supply(harness: ScenarioSession, supply: int) -> None:
    harness.run(harness.assertions.assert_total_supply(supply), step="total supply")


@then("An attempt to mint tokens fails")
def mint_fails(harness: ScenarioSession) -> None:
    treasury = harness.bind_treasury()
    harness.run(harness.assertions.assert_fails(harness.provisioner.mint(treasury, 1)), step="mint rejected")


# --- accounts and holdings ---


@given(parsers.parse("A first hedera account with more than {hbars:d} hbar"))
def first_account_with_hbar(harness: ScenarioSession, hbars: int) -> None:
    account = harness.bind("first")
    harness.run(harness.provisioner.ensure_minimum_balance(account, hbars), step="first account balance")


@given("A second Hedera account")
def second_account(harness: ScenarioSession) -> None:
    harness.bind("second")


async def _create_token_with_supply(harness: ScenarioSession, supply: int) -> None:
    treasury = harness.bind_treasury()
    await harness.provisioner.create_token(treasury, htt_token_config(treasury, initial_supply=supply))
    for role in ("first", "second"):
        if harness.context.has_account(role):
            await harness.provisioner.ensure_associated(harness.account(role), payer=treasury)


@given(parsers.parse("A token named Test Token (HTT) with {supply:d} tokens"))
def token_with_supply(harness: ScenarioSession, supply: int) -> None:
    harness.run(_create_token_with_supply(harness, supply), step="create token")


@given(parsers.parse("The {role:w} account holds {amount:d} HTT tokens"))
def account_holds_tokens(harness: ScenarioSession, role: str, amount: int) -> None:
    treasury = harness.bind_treasury()
    harness.run(
        harness.provisioner.ensure_token_holding(harness.account(role), amount, treasury=treasury),
        step=f"{role} account holding",
    )


@given(parsers.parse("A first hedera account with more than {hbars:d} hbar and {htt:d} HTT tokens"))
def first_account_with_hbar_and_tokens(harness: ScenarioSession, hbars: int, htt: int) -> None:
    account = harness.bind("first")
    treasury = harness.bind_treasury()
    harness.run(harness.provisioner.ensure_minimum_balance(account, hbars), step="first account balance")
    harness.run(
        harness.provisioner.ensure_token_holding(account, htt, treasury=treasury),
        step="first account holding",
    )


@given(parsers.parse("A {role:w} Hedera account with {hbars:d} hbar and {htt:d} HTT tokens"))
def account_with_exact_hbar_and_tokens(harness: ScenarioSession, role: str, hbars: int, htt: int) -> None:
    account = harness.bind(role, partition=harness.settings.EXACT_BALANCE_PARTITION)
    treasury = harness.bind_treasury()
    harness.run(harness.provisioner.ensure_exact_balance(account, hbars), step=f"{role} account balance")
    harness.run(
        harness.provisioner.ensure_token_holding(account, htt, treasury=treasury),
        step=f"{role} account holding",
    )


# --- transfers ---


@when(
    parsers.parse(
        "The {sender:w} account creates a transaction to transfer {amount:d} HTT tokens to the {receiver:w} account"
    )
)
def create_transfer(harness: ScenarioSession, sender: str, amount: int, receiver: str) -> None:
    source = harness.account(sender)
    harness.provisioner.build_transfer(
        [(source, -amount), (harness.account(receiver), amount)],
        payer=harness.account("first"),
        signers=[source],
    )


@when(
    parsers.parse(
        "A transaction is created to transfer {out:d} HTT tokens out of the first and second account "
        "and {third:d} HTT tokens into the third account and {fourth:d} HTT tokens into the fourth account"
    )
)
def create_multi_party_transfer(harness: ScenarioSession, out: int, third: int, fourth: int) -> None:
    first, second = harness.account("first"), harness.account("second")
    harness.provisioner.build_transfer(
        [
            (first, -out),
            (second, -out),
            (harness.account("third"), third),
            (harness.account("fourth"), fourth),
        ],
        payer=first,
        signers=[second, first],
    )


@when(parsers.parse("The {role:w} account submits the transaction"))
def submit_transaction(harness: ScenarioSession, role: str) -> None:
    harness.run(harness.provisioner.submit_pending(harness.account(role)), step="submit transaction")


@then("The transaction succeeds")
def transaction_succeeds(harness: ScenarioSession) -> None:
    harness.assertions.assert_receipt_succeeded()


@then(parsers.parse("The {role:w} account holds {amount:d} HTT tokens"))
def account_token_balance(harness: ScenarioSession, role: str, amount: int) -> None:
    harness.run(harness.assertions.assert_token_balance(harness.account(role), amount), step=f"{role} balance")


@then(parsers.parse("The {role:w} account has paid for the transaction fee"))
def fee_paid(harness: ScenarioSession, role: str) -> None:
    harness.run(harness.assertions.assert_hbar_decreased(harness.account(role)), step="fee paid")
