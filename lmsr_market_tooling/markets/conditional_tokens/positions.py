"""
Deterministic mapping from outcome indices to the conditional-token ledger's identifiers:

    outcome indices -> index set (bitmask) -> collection id -> position id

Collections nest: the collection of an outcome in a child condition is derived from the
collection of the parent outcome, so the same helpers work for sub-markets of any depth.
"""

import threading
import typing as t
from decimal import Decimal

from cachetools import LRUCache
from web3 import Web3
from web3.constants import HASH_ZERO

from lmsr_market_tooling.errors import InvalidOutcome
from lmsr_market_tooling.gtypes import ChecksumAddress, HexBytes, from_minor_units
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.conditional_tokens.ctf_contracts import (
    ConditionalTokenContract,
)
from lmsr_market_tooling.markets.data_models import OutcomeShares, PredictionMarket

ROOT_COLLECTION_ID = HexBytes(HASH_ZERO)


def outcome_index_to_index_set(outcome_index: int) -> int:
    if outcome_index < 0:
        raise InvalidOutcome(f"Outcome index must be non-negative, got {outcome_index}.")
    return 1 << outcome_index


def outcome_indices_to_index_set(outcome_indices: t.Sequence[int]) -> int:
    if not outcome_indices:
        raise InvalidOutcome("At least one outcome index is required.")
    if len(set(outcome_indices)) != len(outcome_indices):
        raise InvalidOutcome(f"Duplicate outcome indices in {list(outcome_indices)}.")
    return sum(outcome_index_to_index_set(i) for i in outcome_indices)


def index_set_to_outcome_indices(index_set: int) -> list[int]:
    if index_set <= 0:
        raise InvalidOutcome(f"Index set must be positive, got {index_set}.")
    return [i for i in range(index_set.bit_length()) if (index_set >> i) & 1]


def number_of_outcome_collections(outcome_slot_count: int) -> int:
    return 2**outcome_slot_count


def to_index_set(
    outcome_index_or_indices: int | t.Sequence[int], is_index_set: bool = False
) -> int:
    """
    A single index is converted unless it's already an index set, a sequence of indices is always converted.
    """
    if isinstance(outcome_index_or_indices, int):
        if not is_index_set:
            return outcome_index_to_index_set(outcome_index_or_indices)
        if outcome_index_or_indices <= 0:
            raise InvalidOutcome(
                f"Index set must be positive, got {outcome_index_or_indices}."
            )
        return outcome_index_or_indices
    return outcome_indices_to_index_set(outcome_index_or_indices)


class PositionResolver:
    def __init__(
        self, conditional_tokens: ConditionalTokenContract, cache_size: int = 4096
    ) -> None:
        self.conditional_tokens = conditional_tokens
        self._collection_ids: LRUCache[tuple[HexBytes, HexBytes, int], HexBytes] = (
            LRUCache(maxsize=cache_size)
        )
        self._lock = threading.Lock()

    def collection_id(
        self,
        condition_id: HexBytes,
        outcome_index_or_indices: int | t.Sequence[int],
        parent_collection_id: HexBytes | None = None,
        is_index_set: bool = False,
        web3: Web3 | None = None,
    ) -> HexBytes:
        index_set = to_index_set(outcome_index_or_indices, is_index_set=is_index_set)
        parent = (
            HexBytes(parent_collection_id)
            if parent_collection_id is not None
            else ROOT_COLLECTION_ID
        )
        key = (parent, HexBytes(condition_id), index_set)

        with self._lock:
            cached = self._collection_ids.get(key)
        if cached is not None:
            return cached

        collection_id = self.conditional_tokens.getCollectionId(
            parent, HexBytes(condition_id), index_set, web3=web3
        )
        with self._lock:
            self._collection_ids[key] = collection_id
        return collection_id

    def position_id(
        self,
        collateral_token_address: ChecksumAddress,
        collection_id: HexBytes,
        web3: Web3 | None = None,
    ) -> int:
        return self.conditional_tokens.getPositionId(
            collateral_token_address, collection_id, web3=web3
        )

    def conditional_balance(
        self,
        market: PredictionMarket,
        outcome_index: int,
        target: ChecksumAddress,
        sub_condition_id: HexBytes | None = None,
        parent_collection_id: HexBytes | None = None,
        web3: Web3 | None = None,
    ) -> Decimal:
        if sub_condition_id is not None:
            condition_id = sub_condition_id
            parent = parent_collection_id
        else:
            condition_id = market.condition_id
            parent = market.parent_collection_id

        collection_id = self.collection_id(
            condition_id, outcome_index, parent_collection_id=parent, web3=web3
        )
        if collection_id.is_empty:
            raise InvalidOutcome(
                f"Outcome {outcome_index} of condition {condition_id.hex()} has no collection."
            )

        position_id = self.position_id(
            market.collateral_token.address, collection_id, web3=web3
        )
        if not position_id:
            raise InvalidOutcome(
                f"Outcome {outcome_index} of condition {condition_id.hex()} has no position."
            )

        balance = self.conditional_tokens.balanceOf(target, position_id, web3=web3)
        return from_minor_units(balance, market.collateral_token.decimals)

    def get_shares_in_market(
        self,
        market: PredictionMarket,
        target: ChecksumAddress | None = None,
        web3: Web3 | None = None,
    ) -> list[OutcomeShares]:
        """
        Balances of every outcome, each with the balances of its sub-market's outcomes, to any depth.
        Without a target, every (sub-)market reports the holdings of its own AMM.
        """
        holder = target or market.address
        logger.debug(f"Reading shares of {holder} in {market}.")
        shares = []
        for outcome in market.outcomes:
            sub_market = market.get_sub_market(outcome.title)
            shares.append(
                OutcomeShares(
                    title=outcome.title,
                    token_index=outcome.token_index,
                    balance=self.conditional_balance(
                        market, outcome.token_index, holder, web3=web3
                    ),
                    sub=(
                        self.get_shares_in_market(sub_market, target, web3=web3)
                        if sub_market is not None
                        else []
                    ),
                )
            )
        return shares
