from decimal import Decimal

from web3 import Web3

from lmsr_market_tooling.errors import InvalidOutcome
from lmsr_market_tooling.gtypes import Wei
from lmsr_market_tooling.markets.data_models import PredictionMarket
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import (
    MARGINAL_PRICE_ONE,
    LMSRMarketMakerContract,
)


def one_hot_amounts(
    market: PredictionMarket, outcome_index: int, amount: Wei
) -> list[Wei]:
    market.get_outcome(outcome_index)
    return [
        amount if index == outcome_index else Wei(0)
        for index in range(market.outcome_slot_count)
    ]


class LMSRPricingEngine:
    """
    Read-only quotes of an LMSR market maker. Amounts go in and out in minor units of the collateral.
    """

    def __init__(self, web3: Web3 | None = None) -> None:
        self.web3 = web3

    def market_maker_contract(self, market: PredictionMarket) -> LMSRMarketMakerContract:
        return LMSRMarketMakerContract(address=market.address)

    def net_cost(self, market: PredictionMarket, outcome_token_amounts: list[Wei]) -> Wei:
        if len(outcome_token_amounts) != market.outcome_slot_count:
            raise InvalidOutcome(
                f"Expected {market.outcome_slot_count} outcome token amounts, got {len(outcome_token_amounts)}."
            )
        return self.market_maker_contract(market).calcNetCost(
            outcome_token_amounts, web3=self.web3
        )

    def marginal_price(self, market: PredictionMarket, outcome_index: int) -> Decimal:
        market.get_outcome(outcome_index)
        raw_price = self.market_maker_contract(market).calcMarginalPrice(
            outcome_index, call_from=market.address, web3=self.web3
        )
        return Decimal(raw_price) / Decimal(MARGINAL_PRICE_ONE)

    def single_outcome_cost(
        self, market: PredictionMarket, outcome_index: int, amount: Wei
    ) -> Wei:
        return self.net_cost(market, one_hot_amounts(market, outcome_index, amount))

    def batch_outcome_cost(self, market: PredictionMarket, amounts: list[Wei]) -> Wei:
        return self.net_cost(market, amounts)
