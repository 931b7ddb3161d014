import typer

from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.data_models import OutcomeShares, PredictionMarket
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import LMSRMarketMakerContract
from lmsr_market_tooling.service import PredictionMarketService
from lmsr_market_tooling.tools.utils import summarize_error

app = typer.Typer()


@app.command()
def close(
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
) -> None:
    """
    Helper script to close an LMSR market (and its sub-markets), usage:

    ```bash
    python scripts/manage_market_lmsr.py close --market-address 0x...
    ```
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    if service.close_market(market) is None:
        logger.info(f"{market} was already closed.")


@app.command()
def resolve(
    payouts: list[float] = typer.Option(
        ..., help="One value per outcome, e.g. `--payouts 1 --payouts 0`."
    ),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
) -> None:
    """
    Helper script to report the payouts of an LMSR market as its oracle, usage:

    ```bash
    python scripts/manage_market_lmsr.py resolve --payouts 1 --payouts 0
    ```
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    service.resolve_market(market, payouts)


@app.command()
def redeem(
    trader_index: int = typer.Option(0),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
) -> None:
    """
    Redeems the positions of the trader in the market and in all of its sub-markets.
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    for redeemed_market in reversed(market.iter_markets()):
        if not service.is_resolved_on_ledger(redeemed_market):
            logger.warning(f"Skipping {redeemed_market}, its payouts aren't reported yet.")
            continue
        try:
            result = service.redeem(trader_index, redeemed_market)
        except Exception as e:
            logger.error(f"Redeeming from {redeemed_market} failed: {summarize_error(e)}")
            continue
        logger.info(f"Redeemed {result.total_payout} from {redeemed_market}.")


@app.command()
def show(
    trader_index: int = typer.Option(
        None, help="Show the holdings of this trader instead of the market maker's."
    ),
    market_address: str = typer.Option(
        None, help="Defaults to the most recently created market."
    ),
) -> None:
    """
    Prints the state, prices and holdings of a market.
    """
    service = PredictionMarketService.from_config()
    market = get_market(service, market_address)
    for shown_market in market.iter_markets():
        stage = LMSRMarketMakerContract(address=shown_market.address).stage(
            web3=service.web3
        )
        print(f"{shown_market} [stage {stage.name}]")
        print(
            f"  funding {service.get_market_funding(shown_market)} {shown_market.collateral_token.symbol}, fee {service.get_market_fee(shown_market)}"
        )
        for priced in service.get_outcome_prices(shown_market):
            print(f"  {priced.outcome}: {priced.price}")

    print_shares(service.get_shares_in_market(market, trader_index))


def print_shares(shares: list[OutcomeShares], indent: int = 1) -> None:
    for share in shares:
        print(f"{'  ' * indent}{share.title}: {share.balance}")
        print_shares(share.sub, indent + 1)


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


if __name__ == "__main__":
    app()
