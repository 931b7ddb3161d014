import typing as t
from decimal import Decimal
from fractions import Fraction
from pathlib import Path

import pytest
from web3 import Web3

from lmsr_market_tooling.config import TradingConfig
from lmsr_market_tooling.errors import (
    ConditionAlreadyResolved,
    InsufficientFunds,
    InvalidOutcome,
    InvalidTruenessVector,
    VariantNotImplemented,
)
from lmsr_market_tooling.gtypes import HexBytes, OutcomeStr
from lmsr_market_tooling.markets.data_models import Oracle, PredictionMarket
from lmsr_market_tooling.markets.lifecycle import QuestionSpec, payout_numerators
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import MarketMakerStage
from lmsr_market_tooling.markets.market_type import MarketStatus, OracleType
from lmsr_market_tooling.service import PredictionMarketService
from tests.fake_ledger import FakeLedger, label_to_address
from tests.utils import OPERATOR_ADDRESS, ORACLE_ADDRESS, ONE, build_service


@pytest.mark.parametrize(
    "payout_vector, expected",
    [
        ([1, 0], [1, 0]),
        ([0, 1, 0], [0, 1, 0]),
        ([0.5, 0.5], [1, 1]),
        ([0.25, 0.75], [1, 3]),
        ([Fraction(1, 3), Fraction(2, 3)], [1, 2]),
        ([Decimal("0.1"), Decimal("0.9")], [1, 9]),
        ([3, 3], [3, 3]),
    ],
)
def test_payout_numerators(
    payout_vector: list[t.Any], expected: list[int]
) -> None:
    assert payout_numerators(payout_vector, len(payout_vector)) == expected


@pytest.mark.parametrize(
    "payout_vector",
    [
        [0, 0],
        [-1, 2],
        [float("nan"), 1],
        [float("inf"), 1],
        ["yes", 1],
    ],
)
def test_invalid_payout_numerators(payout_vector: list[t.Any]) -> None:
    with pytest.raises(InvalidTruenessVector):
        payout_numerators(payout_vector, 2)


WRONG_LENGTH_VECTORS = [
    ([1, 0, 0], 2),
    ([1], 2),
    ([1, 0], 3),
    ([1, 0, 0, 0], 3),
    ([0, 1, 0], 4),
    ([0, 0, 1, 0, 0], 4),
]


@pytest.mark.parametrize("payout_vector, outcome_slot_count", WRONG_LENGTH_VECTORS)
def test_payout_numerators_wrong_length(
    payout_vector: list[int], outcome_slot_count: int
) -> None:
    with pytest.raises(InvalidTruenessVector):
        payout_numerators(payout_vector, outcome_slot_count)


def test_question_spec_markets_count() -> None:
    spec = QuestionSpec(
        question="A?",
        sub_questions={
            OutcomeStr("Yes"): QuestionSpec(
                question="B?", sub_questions={OutcomeStr("No"): QuestionSpec(question="C?")}
            ),
            OutcomeStr("No"): QuestionSpec(question="D?"),
        },
    )
    assert spec.markets_count == 4


def test_create_market(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    market = service.create_market("Will it rain tomorrow?", ["Yes", "No"], 1.5)

    assert market.address in fake_ledger.market_makers
    assert market.status == MarketStatus.ONGOING
    assert market.creator == OPERATOR_ADDRESS
    assert market.oracle == Oracle(address=ORACLE_ADDRESS, type=OracleType.CENTRALIZED)
    assert market.question_id == HexBytes(Web3.keccak(text="Will it rain tomorrow?"))
    assert market.condition_id == fake_ledger.condition_id(
        ORACLE_ADDRESS, market.question_id, 2
    )
    assert market.initial_liquidity == Decimal("1.5")
    assert [o.title for o in market.outcomes] == ["Yes", "No"]
    assert [o.token_index for o in market.outcomes] == [0, 1]
    assert not market.is_child_market
    assert service.validate_market_creation(market.condition_id, 2)
    assert not service.validate_market_creation(market.condition_id, 3)
    assert not service.validate_market_creation(HexBytes(Web3.keccak(text="x")))

    [deposit] = fake_ledger.sent_calls("deposit")
    assert deposit.value == 15 * ONE // 10
    assert fake_ledger.market_makers[market.address].funding == 15 * ONE // 10
    assert service.store.find_all() == [market]


def test_create_market_reuses_prepared_condition(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    first = service.create_market("Will it rain tomorrow?", ["Yes", "No"], 1)
    second = service.create_market("Will it rain tomorrow?", ["Yes", "No"], 1)

    assert first.condition_id == second.condition_id
    assert first.address != second.address
    assert len(fake_ledger.sent_calls("prepareCondition")) == 1
    assert len(service.store.find_all()) == 2


def test_create_market_with_sub_markets(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    market = service.create_market(
        "Who wins the election?",
        ["Alice", "Bob", "Carol"],
        1,
        sub_questions={
            OutcomeStr("Alice"): QuestionSpec(
                question="Will Alice win by a landslide?",
                sub_questions={
                    OutcomeStr("Yes"): QuestionSpec(question="Will it be a record?")
                },
            ),
            OutcomeStr("Carol"): "Will Carol win by a landslide?",
        },
    )

    assert len(fake_ledger.market_makers) == 4
    assert sum(tx.value for tx in fake_ledger.sent_calls("deposit")) == 4 * ONE
    assert [m.question for m in market.iter_markets()] == [
        "Who wins the election?",
        "Will Alice win by a landslide?",
        "Will it be a record?",
        "Will Carol win by a landslide?",
    ]

    alice = market.get_sub_market(OutcomeStr("Alice"))
    assert alice is not None
    alice_outcome = market.outcomes[0]
    assert alice_outcome.collection_id == service.positions.collection_id(
        market.condition_id, 0
    )
    assert alice.parent_collection_id == alice_outcome.collection_id
    assert alice_outcome.sub == alice.outcomes
    assert market.outcomes[1].sub is None
    assert market.get_sub_market(OutcomeStr("Bob")) is None

    record = alice.get_sub_market(OutcomeStr("Yes"))
    assert record is not None
    assert record.parent_collection_id == service.positions.collection_id(
        alice.condition_id, 0, parent_collection_id=alice.parent_collection_id
    )
    assert record.is_child_market

    [stored] = service.store.find_all()
    assert stored == market


@pytest.mark.parametrize(
    "outcomes, sub_questions",
    [
        (["Yes"], {}),
        (["Yes", "Yes"], {}),
        (["Yes", "No"], {OutcomeStr("Maybe"): "Will it?"}),
        (
            ["Yes", "No"],
            {OutcomeStr("Yes"): QuestionSpec(question="Will it?", outcomes=[OutcomeStr("Only")])},
        ),
    ],
)
def test_create_market_with_invalid_outcomes(
    service: PredictionMarketService,
    fake_ledger: FakeLedger,
    outcomes: list[str],
    sub_questions: dict[OutcomeStr, t.Any],
) -> None:
    with pytest.raises(InvalidOutcome):
        service.create_market("Will it rain?", outcomes, 1, sub_questions=sub_questions)
    assert fake_ledger.sent == []


def test_create_market_requires_liquidity(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    with pytest.raises(ValueError):
        service.create_market("Will it rain?", ["Yes", "No"], 0)
    assert fake_ledger.sent == []


def test_create_market_with_plain_collateral_requires_balance(
    store_path: Path, web3: Web3
) -> None:
    with FakeLedger(depositable_collateral=False).installed() as fake_ledger:
        service = build_service(fake_ledger, store_path, web3)
        with pytest.raises(InsufficientFunds) as e:
            service.create_market("Will it rain?", ["Yes", "No"], 1)

    assert e.value.shortfall == Decimal(1)
    assert not fake_ledger.market_makers


def test_create_market_with_fee(
    fake_ledger: FakeLedger, store_path: Path, web3: Web3
) -> None:
    service = build_service(
        fake_ledger, store_path, web3, TradingConfig(MARKET_FEE=ONE // 100)
    )
    market = service.create_market("Will it rain?", ["Yes", "No"], 1)
    assert service.get_market_fee(market) == Decimal("0.01")


def test_close_market_is_idempotent(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    assert service.close_market(binary_market) is not None
    closed_at = binary_market.closed_at
    assert closed_at is not None
    assert binary_market.status == MarketStatus.CLOSED

    assert service.close_market(binary_market) is None
    assert binary_market.closed_at == closed_at
    assert len(fake_ledger.sent_calls("close")) == 1
    assert fake_ledger.market_makers[binary_market.address].stage == MarketMakerStage.CLOSED

    stored = service.store.find(binary_market.address)
    assert stored is not None and stored.closed_at == closed_at


def test_close_market_closes_sub_markets(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    market = service.create_market(
        "Will it rain?",
        ["Yes", "No"],
        1,
        sub_questions={OutcomeStr("Yes"): "Will it rain a lot?"},
    )

    service.close_market(market)

    assert all(m.closed_at is not None for m in market.iter_markets())
    assert all(
        mm.stage == MarketMakerStage.CLOSED for mm in fake_ledger.market_makers.values()
    )


def test_close_market_resumes_after_a_sub_market_fails(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    market = service.create_market(
        "Will it rain?",
        ["Yes", "No"],
        1,
        sub_questions={OutcomeStr("Yes"): "Will it rain a lot?"},
    )
    sub_market = market.get_sub_market(OutcomeStr("Yes"))
    assert sub_market is not None
    fake_ledger.fail_call(sub_market.address, "close", ConnectionError("connection reset"))

    with pytest.raises(ConnectionError):
        service.close_market(market)

    assert fake_ledger.market_makers[market.address].stage == MarketMakerStage.CLOSED
    assert fake_ledger.market_makers[sub_market.address].stage == MarketMakerStage.RUNNING
    assert market.closed_at is not None
    assert sub_market.closed_at is None
    stored = service.store.find(market.address)
    assert stored is not None and stored.closed_at == market.closed_at

    assert service.close_market(market) is not None
    assert sub_market.closed_at is not None
    assert fake_ledger.market_makers[sub_market.address].stage == MarketMakerStage.CLOSED
    assert [c.address for c in fake_ledger.sent_calls("close")] == [
        market.address,
        sub_market.address,
        sub_market.address,
    ]

    service.resolve_market(market, [1, 0])
    assert market.status == MarketStatus.RESOLVED


def test_close_market_already_closed_on_the_ledger(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    fake_ledger.market_makers[binary_market.address].stage = MarketMakerStage.CLOSED

    assert service.close_market(binary_market) is None
    assert binary_market.closed_at is not None
    assert not fake_ledger.sent_calls("close")

    service.resolve_market(binary_market, [1, 0])
    assert binary_market.status == MarketStatus.RESOLVED


def test_closed_market_prices(
    service: PredictionMarketService, binary_market: PredictionMarket
) -> None:
    service.close_market(binary_market)
    assert [p.price for p in service.get_outcome_prices(binary_market)] == [None, None]

    service.resolve_market(binary_market, [1, 0])
    assert [p.price for p in service.get_outcome_prices(binary_market, 2)] == [
        Decimal(2),
        Decimal(0),
    ]


def test_resolve_market(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    service.resolve_market(binary_market, [0.25, 0.75])

    assert binary_market.status == MarketStatus.RESOLVED
    assert binary_market.closed_at is not None
    assert binary_market.resolved_at is not None
    assert binary_market.closed_at <= binary_market.resolved_at
    assert [o.trueness_ratio for o in binary_market.outcomes] == [0.25, 0.75]

    [report] = fake_ledger.sent_calls("reportPayouts")
    assert report.sender == ORACLE_ADDRESS
    assert report.params == [binary_market.question_id, [1, 3]]
    condition = fake_ledger.conditions[binary_market.condition_id]
    assert condition.payout_numerators == [1, 3]

    stored = service.store.find(binary_market.address)
    assert stored is not None and stored.status == MarketStatus.RESOLVED


@pytest.mark.parametrize("payout_vector, outcome_slot_count", WRONG_LENGTH_VECTORS)
def test_resolve_market_with_wrong_vector_length(
    service: PredictionMarketService,
    fake_ledger: FakeLedger,
    payout_vector: list[int],
    outcome_slot_count: int,
) -> None:
    market = service.create_market(
        "Which one wins?", [f"Outcome {i}" for i in range(outcome_slot_count)], 1
    )
    sent_before = len(fake_ledger.sent)

    with pytest.raises(InvalidTruenessVector):
        service.resolve_market(market, payout_vector)

    assert len(fake_ledger.sent) == sent_before
    assert market.closed_at is None
    assert market.resolved_at is None


def test_resolve_market_already_resolved_on_the_ledger(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    assert not service.is_resolved_on_ledger(binary_market)
    service.resolve_market(binary_market, [1, 0])
    assert service.is_resolved_on_ledger(binary_market)

    with pytest.raises(ConditionAlreadyResolved):
        service.resolve_market(binary_market, [0, 1])

    assert len(fake_ledger.sent_calls("reportPayouts")) == 1
    assert [o.trueness_ratio for o in binary_market.outcomes] == [1, 0]


def test_resolve_market_reported_by_someone_else(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    fake_ledger.conditions[binary_market.condition_id].payout_numerators = [0, 1]

    with pytest.raises(ConditionAlreadyResolved):
        service.resolve_market(binary_market, [1, 0])

    assert not fake_ledger.sent_calls("reportPayouts")
    assert not fake_ledger.sent_calls("close")
    assert binary_market.resolved_at is None


def test_resolve_market_with_decentralized_oracle(
    service: PredictionMarketService, binary_market: PredictionMarket
) -> None:
    binary_market.oracle.type = OracleType.DECENTRALIZED
    with pytest.raises(VariantNotImplemented):
        service.resolve_market(binary_market, [1, 0])


def test_resolve_market_with_foreign_oracle(
    service: PredictionMarketService, fake_ledger: FakeLedger
) -> None:
    market = service.create_market(
        "Will it rain?",
        ["Yes", "No"],
        1,
        oracle=Oracle(address=label_to_address("someone-else")),
    )
    with pytest.raises(ValueError):
        service.resolve_market(market, [1, 0])
    assert not fake_ledger.sent_calls("reportPayouts")


def test_redeem_nothing(
    service: PredictionMarketService, binary_market: PredictionMarket
) -> None:
    service.resolve_market(binary_market, [1, 0])

    result = service.redeem(1, binary_market)

    assert result.total_payout == 0
    assert [r.payout for r in result.redemptions] == [0]


def test_redeem_single_outcome(
    service: PredictionMarketService,
    binary_market: PredictionMarket,
    fake_ledger: FakeLedger,
) -> None:
    service.trade(0, binary_market, [1, 1])
    service.resolve_market(binary_market, [0.5, 0.5])

    result = service.redeem(0, binary_market, outcome_index=1)

    assert result.total_payout == ONE // 2
    [redeem] = fake_ledger.sent_calls("redeemPositions")
    assert redeem.params[3] == [2]
    with pytest.raises(InvalidOutcome):
        service.redeem(0, binary_market, outcome_index=5)
