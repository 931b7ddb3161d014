import typer

from lmsr_market_tooling.gtypes import OutcomeStr
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.data_models import PredictionMarket
from lmsr_market_tooling.service import PredictionMarketService

app = typer.Typer()


@app.command()
def buy(
    amount: float = typer.Option(),
    outcome: str = typer.Option(),
    trader_index: int = typer.Option(0),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
    max_cost: float = typer.Option(None),
) -> None:
    """
    Helper script to buy outcome tokens of an LMSR market, usage:

    ```bash
    python scripts/trade_lmsr.py buy \
        --amount 0.01 \
        --outcome Yes \
        --trader-index 0
    ```
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    receipt = service.trade(
        trader_index,
        market,
        outcome_amounts(market, outcome, amount),
        manual_collateral_limit=max_cost,
    )
    logger.info(f"Bought {amount} of `{outcome}`, tx {receipt['transactionHash'].hex()}.")


@app.command()
def sell(
    amount: float = typer.Option(),
    outcome: str = typer.Option(),
    trader_index: int = typer.Option(0),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
    min_profit: float = typer.Option(None),
) -> None:
    """
    Helper script to sell outcome tokens back to an LMSR market, usage:

    ```bash
    python scripts/trade_lmsr.py sell \
        --amount 0.01 \
        --outcome Yes \
        --trader-index 0
    ```
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    receipt = service.trade(
        trader_index,
        market,
        outcome_amounts(market, outcome, amount),
        is_selling=True,
        manual_collateral_limit=-min_profit if min_profit is not None else None,
    )
    logger.info(f"Sold {amount} of `{outcome}`, tx {receipt['transactionHash'].hex()}.")


@app.command()
def buy_with_sub_markets(
    amount: float = typer.Option(),
    outcome: str = typer.Option(),
    sub_outcome: str = typer.Option(),
    trader_index: int = typer.Option(0),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
) -> None:
    """
    Buys `outcome` in the market and `sub_outcome` in the sub-market of `outcome`, both at once.
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    sub_market = market.get_sub_market(OutcomeStr(outcome))
    if sub_market is None:
        raise typer.BadParameter(f"Outcome `{outcome}` has no sub-market.")

    results = service.trade_with_sub_markets(
        trader_index,
        market,
        outcome_amounts(market, outcome, amount),
        {OutcomeStr(outcome): outcome_amounts(sub_market, sub_outcome, amount)},
    )
    for result in results:
        if result.success:
            logger.info(f"Trade in {result.market_address} went through.")
        else:
            logger.error(f"Trade in {result.market_address} failed: {result.error}")


def get_market(
    service: PredictionMarketService, market_address: str | None
) -> PredictionMarket:
    market = (
        service.store.find(market_address)
        if market_address
        else service.store.get_recent()
    )
    if market is None:
        raise typer.BadParameter(
            f"Market {market_address or '(most recent)'} isn't in the store."
        )
    return market


def outcome_amounts(
    market: PredictionMarket, outcome: str, amount: float
) -> list[float]:
    outcome_index = market.get_outcome_index(OutcomeStr(outcome))
    return [
        amount if index == outcome_index else 0.0
        for index in range(market.outcome_slot_count)
    ]


if __name__ == "__main__":
    app()
