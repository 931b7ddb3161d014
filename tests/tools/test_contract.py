import typing as t
from unittest.mock import patch

import pytest
from web3 import Web3
from web3.exceptions import ContractLogicError

from lmsr_market_tooling.accounts import AccountProvider
from lmsr_market_tooling.errors import (
    EventNotFound,
    LedgerCallFailed,
    SequencingConflict,
    UnsupportedCollateral,
)
from lmsr_market_tooling.gtypes import HexBytes, TxReceipt
from lmsr_market_tooling.markets.conditional_tokens.ctf_contracts import (
    ConditionalTokenContract,
)
from lmsr_market_tooling.tools.contract import (
    ContractDepositableWrapperERC20BaseClass,
    ContractERC20BaseClass,
    init_collateral_token_contract,
)
from tests.fake_ledger import FakeLedger, label_to_address
from tests.utils import dev_account_keys

RECEIPT = t.cast(TxReceipt, {"status": 1, "logs": [], "transactionHash": HexBytes("0x01")})


def conflict() -> SequencingConflict:
    return SequencingConflict("nonce too low", function_name="setApprovalForAll")


@pytest.fixture
def contract() -> ConditionalTokenContract:
    return ConditionalTokenContract(address=label_to_address("conditional-tokens"))


def test_send_retries_sequencing_conflict_once(
    contract: ConditionalTokenContract, web3: Web3
) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx",
        side_effect=[conflict(), RECEIPT],
    ) as send_mock:
        receipt = contract.send(
            operator, "setApprovalForAll", [operator.address, True], web3=web3
        )

    assert receipt == RECEIPT
    assert send_mock.call_count == 2


def test_send_propagates_second_sequencing_conflict(
    contract: ConditionalTokenContract, web3: Web3
) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    second = conflict()
    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx",
        side_effect=[conflict(), second, RECEIPT],
    ) as send_mock:
        with pytest.raises(SequencingConflict) as e:
            contract.send(
                operator, "setApprovalForAll", [operator.address, True], web3=web3
            )

    assert e.value is second
    assert send_mock.call_count == 2


@pytest.mark.parametrize(
    "error",
    [
        ContractLogicError("execution reverted"),
        LedgerCallFailed("status 0"),
        ValueError("insufficient funds for gas * price + value"),
    ],
)
def test_send_does_not_retry_other_errors(
    contract: ConditionalTokenContract, web3: Web3, error: Exception
) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx",
        side_effect=[error, RECEIPT],
    ) as send_mock:
        with pytest.raises(type(error)) as e:
            contract.send(
                operator, "setApprovalForAll", [operator.address, True], web3=web3
            )

    assert e.value is error
    assert send_mock.call_count == 1


def test_send_waits_for_the_configured_receipt_timeout(
    contract: ConditionalTokenContract, web3: Web3, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("RECEIPT_TIMEOUT", "42")
    operator = AccountProvider(dev_account_keys()).operator()
    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx",
        return_value=RECEIPT,
    ) as send_mock:
        contract.send(operator, "setApprovalForAll", [operator.address, True], web3=web3)
        contract.send(
            operator, "setApprovalForAll", [operator.address, True], timeout=5, web3=web3
        )

    assert [c.kwargs["timeout"] for c in send_mock.call_args_list] == [42, 5]


def test_send_no_wait_without_retry(
    contract: ConditionalTokenContract, web3: Web3
) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx_no_wait",
        side_effect=[conflict(), HexBytes("0x01")],
    ) as send_mock:
        with pytest.raises(SequencingConflict):
            contract.send_no_wait(
                operator,
                "setApprovalForAll",
                [operator.address, True],
                web3=web3,
                prevent_retry=True,
            )

    assert send_mock.call_count == 1


def test_invoke_dispatches(contract: ConditionalTokenContract, web3: Web3) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    with patch(
        "lmsr_market_tooling.tools.contract.call_function_on_contract",
        return_value=2,
    ) as call_mock:
        assert (
            contract.invoke(
                "getOutcomeSlotCount", HexBytes("0x01"), is_read_only=True, web3=web3
            )
            == 2
        )
    assert call_mock.call_args.kwargs["function_params"] == [HexBytes("0x01")]

    with patch(
        "lmsr_market_tooling.tools.contract.send_function_on_contract_tx_no_wait",
        return_value=HexBytes("0x02"),
    ) as send_mock:
        assert contract.invoke(
            "setApprovalForAll",
            operator.address,
            True,
            identity=operator,
            skip_confirmation=True,
            web3=web3,
        ) == HexBytes("0x02")
    assert send_mock.call_args.kwargs["identity"] == operator


def test_call_propagates_errors(contract: ConditionalTokenContract, web3: Web3) -> None:
    with patch(
        "lmsr_market_tooling.tools.contract.call_function_on_contract",
        side_effect=ContractLogicError("execution reverted"),
    ):
        with pytest.raises(ContractLogicError):
            contract.getOutcomeSlotCount(HexBytes("0x01"), web3=web3)


def test_get_event_from_receipt_unknown_event(
    contract: ConditionalTokenContract, web3: Web3
) -> None:
    with pytest.raises(EventNotFound):
        contract.get_event_from_receipt(RECEIPT, "AMMOutcomeTokenTrade", web3=web3)


def test_get_event_from_receipt_without_logs(
    contract: ConditionalTokenContract, web3: Web3
) -> None:
    assert contract.get_event_from_receipt(RECEIPT, "ConditionPreparation", web3=web3) == []


def test_init_collateral_token_contract(fake_ledger: FakeLedger, web3: Web3) -> None:
    collateral = init_collateral_token_contract(fake_ledger.collateral_address, web3)
    assert isinstance(collateral, ContractDepositableWrapperERC20BaseClass)

    fake_ledger.depositable_collateral = False
    collateral = init_collateral_token_contract(fake_ledger.collateral_address, web3)
    assert isinstance(collateral, ContractERC20BaseClass)
    assert not isinstance(collateral, ContractDepositableWrapperERC20BaseClass)

    with pytest.raises(UnsupportedCollateral):
        init_collateral_token_contract(label_to_address("nothing-here"), web3)

    with pytest.raises(UnsupportedCollateral):
        init_collateral_token_contract(fake_ledger.conditional_tokens_address, web3)


def test_erc20_cached_values(fake_ledger: FakeLedger, web3: Web3) -> None:
    collateral = ContractERC20BaseClass(address=fake_ledger.collateral_address)
    assert collateral.symbol_cached(web3) == "WETH"
    fake_ledger.collateral_symbol = "CHANGED"
    assert collateral.symbol_cached(web3) == "WETH"
    assert collateral.symbol(web3) == "CHANGED"
    assert collateral.decimals_cached(web3) == 18


def test_erc20_allowance(fake_ledger: FakeLedger, web3: Web3) -> None:
    operator = AccountProvider(dev_account_keys()).operator()
    spender = label_to_address("spender")
    collateral = ContractERC20BaseClass(address=fake_ledger.collateral_address)
    assert collateral.allowance(operator.address, spender, web3=web3) == 0

    collateral.approve(operator, spender, 5, web3=web3)

    assert collateral.allowance(operator.address, spender, web3=web3) == 5
