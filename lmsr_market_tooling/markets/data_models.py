from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from lmsr_market_tooling.errors import InvalidOutcome
from lmsr_market_tooling.gtypes import (
    ChainID,
    ChecksumAddress,
    HexAddress,
    HexBytes,
    OutcomeStr,
    TxReceipt,
    Wei,
)
from lmsr_market_tooling.markets.market_type import (
    MarketStatus,
    MarketType,
    OracleType,
)

YES_OUTCOME = OutcomeStr("Yes")
NO_OUTCOME = OutcomeStr("No")
BINARY_OUTCOMES = [YES_OUTCOME, NO_OUTCOME]


class Condition(BaseModel):
    id: HexBytes
    oracle_address: ChecksumAddress
    question_id: HexBytes
    outcome_slot_count: int
    question: str


class CollateralToken(BaseModel):
    address: ChecksumAddress
    symbol: str
    decimals: int


class Oracle(BaseModel):
    address: ChecksumAddress
    type: OracleType = OracleType.CENTRALIZED


class OutcomeToken(BaseModel):
    title: OutcomeStr
    token_index: int
    # Fraction of the payout assigned to this slot, known only after the resolution.
    trueness_ratio: Optional[float] = None
    collection_id: Optional[HexBytes] = None
    sub: Optional[list["OutcomeToken"]] = None


class PredictionMarket(BaseModel):
    """
    A deployed AMM instance together with the condition it trades.

    Child markets (in `sub_markets`) are full markets on their own, their condition is nested
    under the collection of the parent outcome they belong to (`parent_collection_id`).
    """

    address: ChecksumAddress
    type: MarketType = MarketType.LMSR
    chain_id: ChainID
    question: str
    question_id: HexBytes
    condition_id: HexBytes
    collateral_token: CollateralToken
    oracle: Oracle
    creator: ChecksumAddress
    initial_liquidity: Decimal
    outcomes: list[OutcomeToken]
    sub_markets: Optional[dict[OutcomeStr, "PredictionMarket"]] = None
    parent_collection_id: Optional[HexBytes] = None
    started_at: datetime
    closed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def status(self) -> MarketStatus:
        if self.resolved_at is not None:
            return MarketStatus.RESOLVED
        if self.closed_at is not None:
            return MarketStatus.CLOSED
        return MarketStatus.ONGOING

    @property
    def outcome_slot_count(self) -> int:
        return len(self.outcomes)

    @property
    def is_child_market(self) -> bool:
        return self.parent_collection_id is not None

    def get_outcome(self, index: int) -> OutcomeToken:
        for outcome in self.outcomes:
            if outcome.token_index == index:
                return outcome
        raise InvalidOutcome(
            f"Outcome index {index} doesn't exist in market {self.address}."
        )

    def get_outcome_index(self, title: OutcomeStr) -> int:
        for outcome in self.outcomes:
            if outcome.title.lower() == title.lower():
                return outcome.token_index
        raise InvalidOutcome(f"Outcome `{title}` not found in market {self.address}.")

    def get_sub_market(self, title: OutcomeStr) -> Optional["PredictionMarket"]:
        return (self.sub_markets or {}).get(title)

    def iter_markets(self) -> list["PredictionMarket"]:
        """This market followed by all of its (nested) sub-markets, depth-first."""
        markets = [self]
        for sub_market in (self.sub_markets or {}).values():
            markets.extend(sub_market.iter_markets())
        return markets

    def __str__(self) -> str:
        return f"{self.type.value} market `{self.question}` at {self.address} ({self.status.value})"


class PricedOutcome(BaseModel):
    outcome: OutcomeStr
    index: int
    price: Optional[Decimal]
    token: OutcomeToken


class OutcomeShares(BaseModel):
    title: OutcomeStr
    token_index: int
    balance: Decimal
    sub: list["OutcomeShares"] = []


class ConditionPreparationEvent(BaseModel):
    conditionId: HexBytes
    oracle: HexAddress
    questionId: HexBytes
    outcomeSlotCount: int


class ConditionResolutionEvent(BaseModel):
    conditionId: HexBytes
    oracle: HexAddress
    questionId: HexBytes
    outcomeSlotCount: int
    payoutNumerators: list[int]


class PayoutRedemptionEvent(BaseModel):
    redeemer: HexAddress
    collateralToken: HexAddress
    parentCollectionId: HexBytes
    conditionId: HexBytes
    indexSets: list[int]
    payout: Wei


class LMSRMarketMakerCreationEvent(BaseModel):
    creator: HexAddress
    lmsrMarketMaker: HexAddress
    pmSystem: HexAddress
    collateralToken: HexAddress
    conditionIds: list[HexBytes]
    fee: int
    funding: Wei


class AMMOutcomeTokenTradeEvent(BaseModel):
    transactor: HexAddress
    outcomeTokenAmounts: list[int]
    outcomeTokenNetCost: int
    marketFees: Wei


@dataclass
class RedemptionResult:
    receipt: TxReceipt
    redemptions: list[PayoutRedemptionEvent]

    @property
    def total_payout(self) -> Wei:
        return Wei(sum(redemption.payout for redemption in self.redemptions))


@dataclass
class BatchTradeResult:
    """
    Settlement of one trade in a batch. Either `receipt` or `error` is set, never both.
    """

    market_address: ChecksumAddress
    outcome_title: Optional[OutcomeStr] = None
    receipt: Optional[TxReceipt] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None
