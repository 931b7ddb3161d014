from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from web3 import Web3

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.config import TradingConfig
from lmsr_market_tooling.errors import InsufficientFunds
from lmsr_market_tooling.gtypes import TxReceipt, Wei, from_minor_units
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.conditional_tokens.ctf_contracts import (
    ConditionalTokenContract,
)
from lmsr_market_tooling.markets.data_models import PredictionMarket
from lmsr_market_tooling.markets.lmsr.lmsr_pricing import LMSRPricingEngine
from lmsr_market_tooling.tools.auto_deposit import (
    auto_deposit_depositable_wrapper_erc20,
)
from lmsr_market_tooling.tools.contract import (
    ContractDepositableWrapperERC20BaseClass,
    ContractERC20BaseClass,
    init_collateral_token_contract,
)
from lmsr_market_tooling.tools.utils import summarize_error
from lmsr_market_tooling.tools.web3_utils import get_native_balance


class TradeStep(str, Enum):
    QUOTE = "QUOTE"
    BALANCE_CHECK = "BALANCE_CHECK"
    TOPUP = "TOPUP"
    APPROVE = "APPROVE"
    SUBMIT = "SUBMIT"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


def cost_with_slippage(cost: Wei, slippage: float) -> Wei:
    """
    Quoted cost plus the slippage buffer, rounded half up to whole minor units.
    """
    buffer = (Decimal(cost) * Decimal(str(slippage))).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return Wei(cost + int(buffer))


class LMSRTradeOrchestrator:
    """
    Sequences a single buy or sell against an LMSR market maker:

        QUOTE -> BALANCE_CHECK -> [TOPUP] -> APPROVE -> SUBMIT -> CONFIRMED

    Any failing step is logged as FAILED and its exception propagates to the caller.
    """

    def __init__(
        self,
        pricing: LMSRPricingEngine,
        conditional_tokens: ConditionalTokenContract,
        config: TradingConfig | None = None,
        web3: Web3 | None = None,
    ) -> None:
        self.pricing = pricing
        self.conditional_tokens = conditional_tokens
        self.config = config or TradingConfig()
        self.web3 = web3

    def _log_step(
        self, step: TradeStep, market: PredictionMarket, trader: SigningIdentity, message: str
    ) -> None:
        logger.info(f"[{step.value}] {trader} on {market.address}: {message}")

    def buy(
        self,
        buyer: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        step = TradeStep.QUOTE
        try:
            cost = self.pricing.net_cost(market, outcome_token_amounts)
            cost_for_sure = cost_with_slippage(cost, self.config.TRADE_SLIPPAGE)
            self._log_step(
                step, market, buyer, f"cost {cost}, with slippage {cost_for_sure}."
            )

            step = TradeStep.BALANCE_CHECK
            collateral_token = ContractERC20BaseClass(
                address=market.collateral_token.address
            )
            balance = collateral_token.balanceOf(buyer.address, web3=self.web3)
            self._log_step(step, market, buyer, f"collateral balance {balance}.")

            if cost_for_sure > balance:
                step = TradeStep.TOPUP
                self._top_up(buyer, market, cost_for_sure, Wei(cost_for_sure - balance))

            step = TradeStep.APPROVE
            collateral_token.approve(
                buyer, market.address, cost_for_sure, web3=self.web3
            )
            self._log_step(step, market, buyer, f"allowance of {cost_for_sure} granted.")

            step = TradeStep.SUBMIT
            collateral_limit = (
                cost_for_sure
                if manual_collateral_limit is None
                else min(cost_for_sure, manual_collateral_limit)
            )
            self._log_step(
                step,
                market,
                buyer,
                f"buying {outcome_token_amounts} with collateral limit {collateral_limit}.",
            )
            receipt = self.pricing.market_maker_contract(market).trade(
                buyer, outcome_token_amounts, collateral_limit, web3=self.web3
            )
        except Exception as e:
            self._log_step(
                TradeStep.FAILED, market, buyer, f"at {step.value}: {summarize_error(e)}"
            )
            raise

        self._log_confirmed(market, buyer, receipt)
        return receipt

    def _top_up(
        self,
        buyer: SigningIdentity,
        market: PredictionMarket,
        cost_for_sure: Wei,
        shortfall: Wei,
    ) -> None:
        decimals = market.collateral_token.decimals
        insufficient_funds = InsufficientFunds(
            shortfall=from_minor_units(shortfall, decimals),
            cost=from_minor_units(cost_for_sure, decimals),
            symbol=market.collateral_token.symbol,
        )
        if not self.config.AUTO_TOP_UP:
            raise insufficient_funds

        self._log_step(
            TradeStep.TOPUP, market, buyer, f"missing {shortfall}, trying to wrap native currency."
        )
        try:
            collateral_token = init_collateral_token_contract(
                market.collateral_token.address, web3=self.web3
            )
            if not isinstance(
                collateral_token, ContractDepositableWrapperERC20BaseClass
            ):
                raise ValueError(
                    f"Collateral {market.collateral_token.symbol} can't be obtained by a deposit."
                )
            native_balance = get_native_balance(
                self.web3 or collateral_token.get_web3(), buyer.address
            )
            if native_balance < shortfall:
                raise ValueError(
                    f"Native balance {native_balance} is lower than the missing {shortfall}."
                )
            auto_deposit_depositable_wrapper_erc20(
                collateral_token, cost_for_sure, buyer, web3=self.web3
            )
        except Exception as e:
            raise insufficient_funds from e

    def sell(
        self,
        seller: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        step = TradeStep.APPROVE
        try:
            if not self.conditional_tokens.isApprovedForAll(
                seller.address, market.address, web3=self.web3
            ):
                # Fire and forget, the pending nonce keeps it ordered before the trade.
                self.conditional_tokens.setApprovalForAll(
                    seller, market.address, True, skip_confirmation=True, web3=self.web3
                )
                self._log_step(step, market, seller, "approval for all submitted.")

            step = TradeStep.QUOTE
            sell_amounts = [Wei(-amount) for amount in outcome_token_amounts]
            profit = Wei(
                -(manual_collateral_limit or self.pricing.net_cost(market, sell_amounts))
            )
            self._log_step(step, market, seller, f"expected profit {profit}.")

            step = TradeStep.SUBMIT
            self._log_step(
                step,
                market,
                seller,
                f"selling {outcome_token_amounts} with collateral limit {profit}.",
            )
            receipt = self.pricing.market_maker_contract(market).trade(
                seller, sell_amounts, profit, web3=self.web3
            )
        except Exception as e:
            self._log_step(
                TradeStep.FAILED, market, seller, f"at {step.value}: {summarize_error(e)}"
            )
            raise

        self._log_confirmed(market, seller, receipt)
        return receipt

    def _log_confirmed(
        self, market: PredictionMarket, trader: SigningIdentity, receipt: TxReceipt
    ) -> None:
        trades = self.pricing.market_maker_contract(market).get_trade_events(
            receipt, web3=self.web3
        )
        self._log_step(
            TradeStep.CONFIRMED,
            market,
            trader,
            ", ".join(
                f"net cost {trade.outcomeTokenNetCost}, fees {trade.marketFees}"
                for trade in trades
            )
            or "no trade event in the receipt.",
        )
