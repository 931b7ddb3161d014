from web3 import Web3

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.gtypes import Wei
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.tools.contract import (
    ContractDepositableWrapperERC20BaseClass,
)


def auto_deposit_depositable_wrapper_erc20(
    collateral_token_contract: ContractDepositableWrapperERC20BaseClass,
    amount_wei: Wei,
    identity: SigningIdentity,
    web3: Web3 | None = None,
) -> Wei:
    """
    Makes sure the identity holds at least `amount_wei` of the wrapper token, by wrapping the missing part of its native balance.
    Returns the deposited amount (zero if nothing was missing).
    """
    collateral_token_balance = collateral_token_contract.balanceOf(
        for_address=identity.address, web3=web3
    )

    if collateral_token_balance >= amount_wei:
        return Wei(0)

    left_to_deposit = Wei(amount_wei - collateral_token_balance)
    logger.info(
        f"Depositing {left_to_deposit} wei of {collateral_token_contract.symbol_cached(web3=web3)} for {identity}."
    )
    collateral_token_contract.deposit(identity, left_to_deposit, web3=web3)
    return left_to_deposit
