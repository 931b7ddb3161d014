import typer

from lmsr_market_tooling.gtypes import OutcomeStr
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.data_models import BINARY_OUTCOMES
from lmsr_market_tooling.service import PredictionMarketService


def main(
    question: str = typer.Option(),
    outcomes: list[str] = typer.Option(BINARY_OUTCOMES),
    initial_liquidity: float = typer.Option(0.01),
    sub_question: list[str] = typer.Option(
        [],
        help="Sub-market for one of the outcomes, given as `outcome=question`.",
    ),
    max_kept: int = typer.Option(
        None, help="Drop all but the most recent markets from the store afterwards."
    ),
) -> None:
    """
    Helper script to create an LMSR market, usage:

    ```bash
    python scripts/create_market_lmsr.py \
        --question "Will GNO reach $500 by the end of the 2024?" \
        --outcomes Yes --outcomes No \
        --initial-liquidity 0.01 \
        --sub-question "Yes=Will it stay above $500 for a week?"
    ```

    Contract addresses and keys are read from the environment (or `.env`).
    """
    sub_questions: dict[OutcomeStr, str] = {}
    for item in sub_question:
        outcome, separator, sub = item.partition("=")
        if not separator or not sub.strip():
            raise typer.BadParameter(
                f"Sub-question `{item}` must be given as `outcome=question`."
            )
        sub_questions[OutcomeStr(outcome.strip())] = sub.strip()

    service = PredictionMarketService.from_config()
    market = service.create_market(
        question=question,
        outcome_titles=outcomes,
        initial_liquidity=initial_liquidity,
        sub_questions=sub_questions,
    )
    logger.info(f"Market created: {market}")
    for sub_market in market.iter_markets()[1:]:
        logger.info(f"Sub-market created: {sub_market}")

    if max_kept is not None:
        service.store.delete_old_ones(max_kept)


if __name__ == "__main__":
    typer.run(main)
