import asyncio
import logging

import pytest

from fakes import (
    ALICE,
    BOB,
    CAROL,
    STRANGER,
    USDC_ADDRESS,
    VAULT_ADDRESS,
    VAULT_METHODS,
    FakeChain,
    tx_hash,
    vault_handler,
)
from txscribe.config import Config
from txscribe.errors import (
    CallDecodeError,
    ExtractorError,
    ReceiptUnavailableError,
    ScenarioFinalizationError,
    ScenarioUsageError,
)
from txscribe.recorder import Scenario, ScenarioState
from txscribe.types import EntryKind, ScenarioConfig
from txscribe.values import Scalar, Struct


def _token_scenario(chain, settings=None, **kwargs):
    usdc = chain.deploy_token(USDC_ADDRESS, decimals=6, balances={ALICE: 1000})
    config = ScenarioConfig(accounts={"alice": ALICE, "bob": BOB, "carol": CAROL}, tokens={"USDC": usdc}, **kwargs)
    return usdc, Scenario(chain, config, name="payments", settings=settings or Config())


def _transfer(usdc, recipient, amount, sender=ALICE):
    return {"from": sender, "to": USDC_ADDRESS, "data": usdc.encode_call("transfer", [recipient, amount])}


def test_single_transfer_round_trip():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        chain.send_transaction(_transfer(usdc, BOB, 250))
        return await scenario.end()

    initial, call = asyncio.run(run())

    assert initial.kind is EntryKind.INITIAL_STATE
    assert initial.balances == {"USDC": {"alice": 1000, "bob": 0, "carol": 0, "USDC": 0}}

    assert call.kind is EntryKind.METHOD_CALL
    assert call.method_name == "transfer"
    assert call.caller == "alice"
    assert call.contract == "USDC"
    assert call.args == (Scalar("bob"), Scalar(250))
    assert call.balances == {"USDC": {"alice": 750, "bob": 250, "carol": 0, "USDC": 0}}
    assert sum(call.balances["USDC"].values()) == sum(initial.balances["USDC"].values())
    assert call.tx_hash == tx_hash(1)

    (event,) = call.events
    assert event.contract == "USDC"
    assert event.name == "Transfer"
    assert event.args == Struct((("from", Scalar("alice")), ("to", Scalar("bob")), ("value", Scalar(250))))

    record = scenario.record()
    assert record.tokens == ("USDC",)
    assert record.decimals == {"USDC": 6}
    assert record.calls == (call,)


def test_initial_state_can_be_disabled():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain, settings=Config(record_initial_state=False))

    async def run():
        await scenario.start()
        chain.send_transaction(_transfer(usdc, BOB, 1))
        return await scenario.end()

    entries = asyncio.run(run())
    assert [entry.kind for entry in entries] == [EntryKind.METHOD_CALL]


def test_dropped_receipt_produces_no_entry_and_no_error(caplog):
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        digest = chain.send_transaction(_transfer(usdc, BOB, 250))
        chain.drop(digest)
        return await scenario.end()

    with caplog.at_level(logging.WARNING, logger="txscribe"):
        entries = asyncio.run(run())

    assert [entry.kind for entry in entries] == [EntryKind.INITIAL_STATE]
    assert scenario.state is ScenarioState.CLOSED
    assert "unavailable" in caplog.text


def test_dropped_receipt_fails_finalization_in_strict_mode():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain, settings=Config(strict_receipts=True))

    async def run():
        await scenario.start()
        chain.drop(chain.send_transaction(_transfer(usdc, BOB, 250)))
        await scenario.end()

    with pytest.raises(ScenarioFinalizationError) as excinfo:
        asyncio.run(run())

    assert isinstance(excinfo.value.failures[0], ReceiptUnavailableError)
    assert excinfo.value.error_code == "FINALIZATION"


def test_entries_follow_confirmation_order_and_read_their_own_block():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        first = chain.send_transaction(_transfer(usdc, BOB, 100))
        chain.hold(first)
        second = chain.send_transaction(_transfer(usdc, CAROL, 200))
        asyncio.get_running_loop().call_later(0.05, chain.release, first)
        return first, second, await scenario.end()

    first, second, entries = asyncio.run(run())

    calls = [entry for entry in entries if entry.kind is EntryKind.METHOD_CALL]
    assert [entry.tx_hash for entry in calls] == [second, first]
    assert calls[0].balances["USDC"]["alice"] == 700
    assert calls[1].balances["USDC"] == {"alice": 900, "bob": 100, "carol": 0, "USDC": 0}


def test_submission_point_is_restored_after_end():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        assert "send_transaction" in vars(chain)
        result = chain.send_transaction(_transfer(usdc, BOB, 5))
        await scenario.end()
        return result

    result = asyncio.run(run())

    assert result == tx_hash(1)
    assert "send_transaction" not in vars(chain)
    chain.send_transaction(_transfer(usdc, BOB, 5))
    assert len(scenario.entries) == 2


def test_sync_submissions_are_resolved_at_end():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    asyncio.run(scenario.start())
    chain.send_transaction(_transfer(usdc, BOB, 10))
    chain.send_transaction(_transfer(usdc, CAROL, 20))
    assert chain.receipt_requests == []

    entries = asyncio.run(scenario.end())

    assert [entry.tx_hash for entry in entries[1:]] == [tx_hash(1), tx_hash(2)]
    assert entries[-1].balances["USDC"] == {"alice": 970, "bob": 10, "carol": 20, "USDC": 0}


def test_async_submission_entrypoint_is_intercepted():
    chain = FakeChain(async_send=True)
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        await chain.asend_transaction(_transfer(usdc, BOB, 40))
        return await scenario.end()

    entries = asyncio.run(run())

    assert entries[-1].balances["USDC"]["bob"] == 40
    assert "asend_transaction" not in vars(chain)


def test_contract_call_records_token_effects_and_own_events():
    chain = FakeChain()
    usdc = chain.deploy_token(USDC_ADDRESS, decimals=6, balances={ALICE: 1000})
    vault = chain.deploy_contract(VAULT_ADDRESS, vault_handler(USDC_ADDRESS), VAULT_METHODS, events=("Deposited",))
    config = ScenarioConfig(accounts={"alice": ALICE}, contracts={"Vault": vault}, tokens={"USDC": usdc})
    scenario = Scenario(chain, config, settings=Config())

    async def run():
        await scenario.start()
        chain.send_transaction({"from": ALICE, "to": VAULT_ADDRESS, "data": vault.encode_call("deposit", [300])})
        return await scenario.end()

    _, call = asyncio.run(run())

    assert (call.caller, call.contract, call.method_name) == ("alice", "Vault", "deposit")
    assert call.balances == {"USDC": {"alice": 700, "Vault": 300, "USDC": 0}}
    assert [(event.contract, event.name) for event in call.events] == [("USDC", "Transfer"), ("Vault", "Deposited")]
    assert call.events[1].args.get("account") == Scalar("alice")


def test_custom_state_extractors_run_per_call():
    chain = FakeChain()

    async def block_of(receipt):
        return receipt.block_number

    usdc, scenario = _token_scenario(
        chain, custom_state={"block": block_of, "status": lambda receipt: receipt.status}
    )

    async def run():
        await scenario.start()
        chain.send_transaction(_transfer(usdc, BOB, 1))
        return await scenario.end()

    initial, call = asyncio.run(run())

    assert initial.custom_state is None
    assert call.custom_state == {"block": 1, "status": 1}


def test_failing_extractor_fails_finalization():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain, custom_state={"boom": lambda receipt: 1 // 0})

    async def run():
        await scenario.start()
        chain.send_transaction(_transfer(usdc, BOB, 1))
        await scenario.end()

    with pytest.raises(ScenarioFinalizationError) as excinfo:
        asyncio.run(run())

    failure = excinfo.value.failures[0]
    assert isinstance(failure, ExtractorError)
    assert failure.extractor == "boom"
    assert scenario.state is ScenarioState.CLOSED


def test_call_to_untracked_contract_fails_finalization_but_passes_through():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        result = chain.send_transaction({"from": ALICE, "to": STRANGER, "data": ("poke", ())})
        assert result == tx_hash(1)
        await scenario.end()

    with pytest.raises(ScenarioFinalizationError) as excinfo:
        asyncio.run(run())

    failure = excinfo.value.failures[0]
    assert isinstance(failure, CallDecodeError)
    assert "untracked" in failure.explanation


def test_unknown_method_is_a_decode_failure():
    chain = FakeChain()
    usdc, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        chain.send_transaction({"from": ALICE, "to": USDC_ADDRESS, "data": ("mint", (ALICE, 5))})
        await scenario.end()

    with pytest.raises(ScenarioFinalizationError) as excinfo:
        asyncio.run(run())

    assert isinstance(excinfo.value.failures[0], CallDecodeError)


def test_double_end_is_a_usage_error():
    chain = FakeChain()
    _, scenario = _token_scenario(chain)

    async def run():
        await scenario.start()
        await scenario.end()
        await scenario.end()

    with pytest.raises(ScenarioUsageError):
        asyncio.run(run())


def test_end_before_start_and_restart_are_usage_errors():
    chain = FakeChain()
    _, scenario = _token_scenario(chain)

    with pytest.raises(ScenarioUsageError, match="never started"):
        asyncio.run(scenario.end())

    asyncio.run(scenario.start())
    asyncio.run(scenario.end())
    with pytest.raises(ScenarioUsageError, match="restarted"):
        asyncio.run(scenario.start())


def test_record_requires_closed_scenario():
    chain = FakeChain()
    _, scenario = _token_scenario(chain)
    asyncio.run(scenario.start())

    with pytest.raises(ScenarioUsageError):
        scenario.record()
    scenario.abort()
    assert scenario.record().entries[0].kind is EntryKind.INITIAL_STATE
