import typing as t
from decimal import Decimal
from fractions import Fraction

from web3 import Web3

from lmsr_market_tooling.accounts import AccountProvider
from lmsr_market_tooling.config import (
    AccountKeys,
    ContractsConfig,
    LedgerConfig,
    StorageConfig,
    TradingConfig,
)
from lmsr_market_tooling.errors import InvalidOutcome, InvalidTradeAmounts
from lmsr_market_tooling.gtypes import (
    ChainID,
    ChecksumAddress,
    HexBytes,
    OutcomeStr,
    TxReceipt,
    Wei,
    from_minor_units,
    to_minor_units,
)
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.market_store import MarketStore
from lmsr_market_tooling.markets.conditional_tokens.ctf_contracts import (
    ConditionalTokenContract,
)
from lmsr_market_tooling.markets.conditional_tokens.positions import PositionResolver
from lmsr_market_tooling.markets.data_models import (
    BatchTradeResult,
    Oracle,
    OutcomeShares,
    OutcomeToken,
    PredictionMarket,
    PricedOutcome,
    RedemptionResult,
)
from lmsr_market_tooling.markets.lifecycle import (
    MarketLifecycleController,
    SubQuestions,
)
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import (
    LMSRMarketMakerContract,
    LMSRMarketMakerFactoryContract,
)
from lmsr_market_tooling.markets.lmsr.lmsr_pricing import (
    LMSRPricingEngine,
    one_hot_amounts,
)
from lmsr_market_tooling.markets.lmsr.lmsr_trading import LMSRTradeOrchestrator
from lmsr_market_tooling.markets.market_maker import MarketMaker, get_market_maker
from lmsr_market_tooling.tools.contract import ContractERC20BaseClass
from lmsr_market_tooling.tools.parallelism import par_map, par_map_settled
from lmsr_market_tooling.tools.utils import summarize_error

Amount = int | float | Decimal
# LMSR fees are fractions of 10**18.
FEE_RANGE = 10**18


class PredictionMarketService:
    """
    Single entry point for everything that can be done with a market. Wires all the collaborators together,
    amounts are accepted and returned in human-decimal units of the market's collateral token.
    """

    def __init__(
        self,
        conditional_tokens: ConditionalTokenContract,
        factory: LMSRMarketMakerFactoryContract,
        accounts: AccountProvider,
        store: MarketStore,
        collateral_token_address: ChecksumAddress,
        chain_id: ChainID,
        trading_config: TradingConfig | None = None,
        web3: Web3 | None = None,
    ) -> None:
        self.conditional_tokens = conditional_tokens
        self.accounts = accounts
        self.store = store
        self.web3 = web3
        self.positions = PositionResolver(conditional_tokens)
        self.pricing = LMSRPricingEngine(web3=web3)
        self.trading = LMSRTradeOrchestrator(
            self.pricing, conditional_tokens, config=trading_config, web3=web3
        )
        self.lifecycle = MarketLifecycleController(
            conditional_tokens=conditional_tokens,
            factory=factory,
            positions=self.positions,
            accounts=accounts,
            store=store,
            collateral_token_address=collateral_token_address,
            chain_id=chain_id,
            trading_config=trading_config,
            web3=web3,
        )

    @classmethod
    def from_config(
        cls,
        ledger_config: LedgerConfig | None = None,
        contracts_config: ContractsConfig | None = None,
        account_keys: AccountKeys | None = None,
        trading_config: TradingConfig | None = None,
        storage_config: StorageConfig | None = None,
    ) -> "PredictionMarketService":
        ledger_config = ledger_config or LedgerConfig()
        contracts_config = contracts_config or ContractsConfig()
        storage_config = storage_config or StorageConfig()
        return cls(
            conditional_tokens=ConditionalTokenContract(
                address=contracts_config.conditional_tokens_address
            ),
            factory=LMSRMarketMakerFactoryContract(
                address=contracts_config.lmsr_factory_address
            ),
            accounts=AccountProvider(account_keys),
            store=MarketStore(storage_config.MARKETS_FILE),
            collateral_token_address=contracts_config.collateral_token_address,
            chain_id=ledger_config.chain_id,
            trading_config=trading_config,
            web3=ledger_config.get_web3(),
        )

    def market_maker(self, market: PredictionMarket) -> MarketMaker:
        return get_market_maker(market.type, self.pricing, self.trading)

    def _to_wei(self, market: PredictionMarket, amount: Amount) -> Wei:
        return to_minor_units(amount, market.collateral_token.decimals)

    def _from_wei(self, market: PredictionMarket, amount: int) -> Decimal:
        return from_minor_units(amount, market.collateral_token.decimals)

    def create_market(
        self,
        question: str,
        outcome_titles: t.Sequence[str],
        initial_liquidity: Amount,
        oracle: Oracle | None = None,
        sub_questions: SubQuestions | None = None,
    ) -> PredictionMarket:
        return self.lifecycle.create_market(
            question,
            outcome_titles,
            initial_liquidity,
            oracle=oracle,
            sub_questions=sub_questions,
        )

    def validate_market_creation(
        self, condition_id: HexBytes, outcome_count: int = 2
    ) -> bool:
        return self.lifecycle.validate_market_creation(condition_id, outcome_count)

    def trade(
        self,
        trader_index: int,
        market: PredictionMarket,
        amounts: t.Sequence[Amount],
        is_selling: bool = False,
        manual_collateral_limit: Amount | None = None,
    ) -> TxReceipt:
        """
        Buys (or sells) the given amount of each outcome token, `amounts[i]` belongs to the outcome with token index `i`.
        """
        if not amounts or all(amount == 0 for amount in amounts):
            raise InvalidTradeAmounts(
                "Nothing to trade, at least one outcome amount must be non-zero."
            )
        if len(amounts) != market.outcome_slot_count:
            raise InvalidOutcome(
                f"Expected {market.outcome_slot_count} outcome amounts, got {len(amounts)}."
            )

        trader = self.accounts.trader(trader_index)
        outcome_token_amounts = [self._to_wei(market, amount) for amount in amounts]
        collateral_limit = (
            self._to_wei(market, manual_collateral_limit)
            if manual_collateral_limit is not None
            else None
        )
        market_maker = self.market_maker(market)
        if is_selling:
            return market_maker.sell(
                trader, market, outcome_token_amounts, collateral_limit
            )
        return market_maker.buy(trader, market, outcome_token_amounts, collateral_limit)

    def trade_with_sub_markets(
        self,
        trader_index: int,
        market: PredictionMarket,
        amounts: t.Sequence[Amount] | None,
        sub_amounts: t.Mapping[OutcomeStr, t.Sequence[Amount]],
        is_selling: bool = False,
    ) -> list[BatchTradeResult]:
        """
        Trades in the market and in the sub-markets of the given outcomes at once.
        Every trade settles on its own, a failed one doesn't undo the others.
        """
        trades: list[tuple[PredictionMarket, OutcomeStr | None, t.Sequence[Amount]]] = []
        if amounts is not None:
            trades.append((market, None, amounts))
        for title, outcome_amounts in sub_amounts.items():
            sub_market = market.get_sub_market(title)
            if sub_market is None:
                raise InvalidOutcome(f"Outcome `{title}` of {market} has no sub-market.")
            trades.append((sub_market, title, outcome_amounts))

        settled = par_map_settled(
            trades,
            lambda trade: self.trade(
                trader_index, trade[0], trade[2], is_selling=is_selling
            ),
        )

        results = []
        for (trade_market, title, _), outcome in zip(trades, settled):
            if outcome.error is not None:
                logger.warning(
                    f"Trade in {trade_market} failed: {summarize_error(outcome.error)}"
                )
            results.append(
                BatchTradeResult(
                    market_address=trade_market.address,
                    outcome_title=title,
                    receipt=outcome.value,
                    error=(
                        summarize_error(outcome.error)
                        if outcome.error is not None
                        else None
                    ),
                )
            )
        return results

    def get_outcome_price(
        self, market: PredictionMarket, index: int, amount: Amount = 1
    ) -> Decimal:
        cost = self.market_maker(market).quote(
            market, one_hot_amounts(market, index, self._to_wei(market, amount))
        )
        return abs(self._from_wei(market, cost))

    def get_batch_outcome_price(
        self, market: PredictionMarket, amounts: t.Sequence[Amount]
    ) -> Decimal:
        cost = self.market_maker(market).quote(
            market, [Wei(abs(self._to_wei(market, amount))) for amount in amounts]
        )
        return self._from_wei(market, cost)

    def get_marginal_price(self, market: PredictionMarket, outcome_index: int) -> Decimal:
        return self.market_maker(market).marginal_price(market, outcome_index)

    def get_outcome_prices(
        self, market: PredictionMarket, amount: Amount = 1
    ) -> list[PricedOutcome]:
        """
        Price of `amount` tokens of each outcome. Once the market is closed, the price is the payout they're worth
        (unknown until the market is resolved), for buying and selling alike.
        """
        amount = amount or 1
        if market.closed_at is not None:
            return [
                PricedOutcome(
                    outcome=outcome.title,
                    index=outcome.token_index,
                    price=(
                        Decimal(str(outcome.trueness_ratio)) * abs(Decimal(str(amount)))
                        if outcome.trueness_ratio is not None
                        else None
                    ),
                    token=outcome,
                )
                for outcome in market.outcomes
            ]

        def price_outcome(outcome: OutcomeToken) -> PricedOutcome:
            return PricedOutcome(
                outcome=outcome.title,
                index=outcome.token_index,
                price=self.get_outcome_price(market, outcome.token_index, amount),
                token=outcome,
            )

        return par_map(market.outcomes, price_outcome)

    def close_market(self, market: PredictionMarket) -> TxReceipt | None:
        return self.lifecycle.close_market(market)

    def resolve_market(
        self,
        market: PredictionMarket,
        payout_vector: t.Sequence[int | float | Decimal | Fraction],
    ) -> TxReceipt:
        return self.lifecycle.resolve_market(market, payout_vector)

    def is_resolved_on_ledger(self, market: PredictionMarket) -> bool:
        return self.lifecycle.is_resolved_on_ledger(market)

    def redeem(
        self,
        trader_index: int,
        market: PredictionMarket,
        outcome_index: int | None = None,
    ) -> RedemptionResult:
        return self.lifecycle.redeem(
            self.accounts.trader(trader_index), market, outcome_index
        )

    def get_shares_in_market(
        self, market: PredictionMarket, trader_index: int | None = None
    ) -> list[OutcomeShares]:
        target = (
            self.accounts.trader(trader_index).address
            if trader_index is not None
            else None
        )
        return self.positions.get_shares_in_market(market, target, web3=self.web3)

    def get_user_collateral_balance(
        self, trader_index: int, market: PredictionMarket
    ) -> Decimal:
        balance = ContractERC20BaseClass(
            address=market.collateral_token.address
        ).balanceOf(self.accounts.trader(trader_index).address, web3=self.web3)
        return self._from_wei(market, balance)

    def get_market_fee(self, market: PredictionMarket) -> Decimal:
        """Trading fee as a fraction, e.g. 0.01 for 1%."""
        fee = LMSRMarketMakerContract(address=market.address).fee(web3=self.web3)
        return Decimal(fee) / Decimal(FEE_RANGE)

    def get_market_funding(self, market: PredictionMarket) -> Decimal:
        funding = LMSRMarketMakerContract(address=market.address).funding(
            web3=self.web3
        )
        return self._from_wei(market, funding)
