import typing as t
from abc import ABC, abstractmethod
from decimal import Decimal

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.errors import VariantNotImplemented
from lmsr_market_tooling.gtypes import TxReceipt, Wei
from lmsr_market_tooling.markets.data_models import PredictionMarket
from lmsr_market_tooling.markets.lmsr.lmsr_pricing import LMSRPricingEngine
from lmsr_market_tooling.markets.lmsr.lmsr_trading import LMSRTradeOrchestrator
from lmsr_market_tooling.markets.market_type import MarketType


class MarketMaker(ABC):
    market_type: t.ClassVar[MarketType]

    @abstractmethod
    def quote(self, market: PredictionMarket, outcome_token_amounts: list[Wei]) -> Wei:
        ...

    @abstractmethod
    def marginal_price(self, market: PredictionMarket, outcome_index: int) -> Decimal:
        ...

    @abstractmethod
    def buy(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        ...

    @abstractmethod
    def sell(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        ...


class LMSRMarketMaker(MarketMaker):
    market_type = MarketType.LMSR

    def __init__(
        self, pricing: LMSRPricingEngine, trading: LMSRTradeOrchestrator
    ) -> None:
        self.pricing = pricing
        self.trading = trading

    def quote(self, market: PredictionMarket, outcome_token_amounts: list[Wei]) -> Wei:
        return self.pricing.batch_outcome_cost(market, outcome_token_amounts)

    def marginal_price(self, market: PredictionMarket, outcome_index: int) -> Decimal:
        return self.pricing.marginal_price(market, outcome_index)

    def buy(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        return self.trading.buy(
            trader, market, outcome_token_amounts, manual_collateral_limit
        )

    def sell(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        return self.trading.sell(
            trader, market, outcome_token_amounts, manual_collateral_limit
        )


class _UnimplementedMarketMaker(MarketMaker):
    def _not_implemented(self) -> t.NoReturn:
        raise VariantNotImplemented(
            f"Market maker `{self.market_type.value}` is not implemented yet."
        )

    def quote(self, market: PredictionMarket, outcome_token_amounts: list[Wei]) -> Wei:
        self._not_implemented()

    def marginal_price(self, market: PredictionMarket, outcome_index: int) -> Decimal:
        self._not_implemented()

    def buy(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        self._not_implemented()

    def sell(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_token_amounts: list[Wei],
        manual_collateral_limit: Wei | None = None,
    ) -> TxReceipt:
        self._not_implemented()


class FixedProductMarketMaker(_UnimplementedMarketMaker):
    market_type = MarketType.FIXED_PRODUCT


class OrderBookMarketMaker(_UnimplementedMarketMaker):
    market_type = MarketType.ORDER_BOOK


def get_market_maker(
    market_type: MarketType,
    pricing: LMSRPricingEngine,
    trading: LMSRTradeOrchestrator,
) -> MarketMaker:
    match market_type:
        case MarketType.LMSR:
            return LMSRMarketMaker(pricing, trading)
        case MarketType.FIXED_PRODUCT:
            return FixedProductMarketMaker()
        case MarketType.ORDER_BOOK:
            return OrderBookMarketMaker()
