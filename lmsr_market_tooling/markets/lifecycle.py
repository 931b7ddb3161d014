import math
import typing as t
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction

from pydantic import BaseModel
from web3 import Web3

from lmsr_market_tooling.accounts import AccountProvider, SigningIdentity
from lmsr_market_tooling.config import TradingConfig
from lmsr_market_tooling.errors import (
    ConditionAlreadyResolved,
    InsufficientFunds,
    InvalidOutcome,
    InvalidTruenessVector,
    LedgerCallFailed,
    VariantNotImplemented,
)
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
from lmsr_market_tooling.markets.conditional_tokens.positions import (
    ROOT_COLLECTION_ID,
    PositionResolver,
    outcome_index_to_index_set,
)
from lmsr_market_tooling.markets.data_models import (
    BINARY_OUTCOMES,
    CollateralToken,
    Condition,
    Oracle,
    OutcomeToken,
    PredictionMarket,
    RedemptionResult,
)
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import (
    LMSRMarketMakerContract,
    LMSRMarketMakerFactoryContract,
    MarketMakerStage,
)
from lmsr_market_tooling.markets.market_type import MarketType, OracleType
from lmsr_market_tooling.tools.auto_deposit import (
    auto_deposit_depositable_wrapper_erc20,
)
from lmsr_market_tooling.tools.contract import (
    ContractDepositableWrapperERC20BaseClass,
    ContractERC20BaseClass,
    init_collateral_token_contract,
)
from lmsr_market_tooling.tools.utils import utcnow


class QuestionSpec(BaseModel):
    """
    A question to create a market for. Sub-questions get their own (nested) market under the outcome they're keyed by.
    """

    question: str
    outcomes: list[OutcomeStr] = BINARY_OUTCOMES
    sub_questions: dict[OutcomeStr, "QuestionSpec"] = {}

    @property
    def markets_count(self) -> int:
        return 1 + sum(sub.markets_count for sub in self.sub_questions.values())


SubQuestions = t.Mapping[OutcomeStr, t.Union[str, QuestionSpec]]


@dataclass
class _PreparedQuestion:
    spec: QuestionSpec
    condition: Condition
    subs: dict[OutcomeStr, "_PreparedQuestion"] = field(default_factory=dict)


def payout_numerators(
    payout_vector: t.Sequence[int | float | Decimal | Fraction], outcome_slot_count: int
) -> list[int]:
    """
    Converts a payout (trueness) vector into the integral numerators the ledger expects.
    Fractions are scaled by the least common multiple of their denominators, so `[0.5, 0.5]` becomes `[1, 1]`.
    """
    if len(payout_vector) != outcome_slot_count:
        raise InvalidTruenessVector(
            f"Payout vector has {len(payout_vector)} values, but the condition has {outcome_slot_count} outcomes."
        )

    fractions = []
    for value in payout_vector:
        try:
            fraction = Fraction(str(value)) if isinstance(value, float) else Fraction(value)
        except (ValueError, TypeError, OverflowError) as e:
            raise InvalidTruenessVector(f"Invalid payout value {value!r}.") from e
        if fraction < 0:
            raise InvalidTruenessVector(f"Payout values can't be negative, got {value}.")
        fractions.append(fraction)

    if sum(fractions) <= 0:
        raise InvalidTruenessVector("At least one payout value must be positive.")

    denominators_lcm = math.lcm(*(fraction.denominator for fraction in fractions))
    return [int(fraction * denominators_lcm) for fraction in fractions]


class MarketLifecycleController:
    """
    Drives a market through trading -> closed -> resolved -> redeemed and keeps the store in sync.
    """

    def __init__(
        self,
        conditional_tokens: ConditionalTokenContract,
        factory: LMSRMarketMakerFactoryContract,
        positions: PositionResolver,
        accounts: AccountProvider,
        store: MarketStore,
        collateral_token_address: ChecksumAddress,
        chain_id: ChainID,
        trading_config: TradingConfig | None = None,
        web3: Web3 | None = None,
    ) -> None:
        self.conditional_tokens = conditional_tokens
        self.factory = factory
        self.positions = positions
        self.accounts = accounts
        self.store = store
        self.collateral_token_address = collateral_token_address
        self.chain_id = chain_id
        self.trading_config = trading_config or TradingConfig()
        self.web3 = web3

    def validate_market_creation(
        self, condition_id: HexBytes, outcome_count: int = 2
    ) -> bool:
        # A prepared condition is the only one with a non-zero slot count.
        return (
            self.conditional_tokens.getOutcomeSlotCount(condition_id, web3=self.web3)
            == outcome_count
        )

    def prepare_condition(
        self,
        identity: SigningIdentity,
        question: str,
        oracle: Oracle,
        outcome_slot_count: int,
    ) -> Condition:
        question_id = HexBytes(Web3.keccak(text=question))
        condition_id = self.conditional_tokens.getConditionId(
            question_id, oracle.address, outcome_slot_count, web3=self.web3
        )

        if self.conditional_tokens.does_condition_exists(condition_id, web3=self.web3):
            logger.info(
                f"Condition {condition_id.hex()} for `{question}` is already prepared, reusing it."
            )
        else:
            prepared = self.conditional_tokens.prepareCondition(
                identity,
                oracle.address,
                question_id,
                outcome_slot_count,
                web3=self.web3,
            )
            condition_id = prepared.conditionId
            logger.info(f"Prepared condition {condition_id.hex()} for `{question}`.")

        return Condition(
            id=condition_id,
            oracle_address=oracle.address,
            question_id=question_id,
            outcome_slot_count=outcome_slot_count,
            question=question,
        )

    def _prepare_conditions(
        self, identity: SigningIdentity, spec: QuestionSpec, oracle: Oracle
    ) -> _PreparedQuestion:
        prepared = _PreparedQuestion(
            spec=spec,
            condition=self.prepare_condition(
                identity, spec.question, oracle, len(spec.outcomes)
            ),
        )
        for title, sub_spec in spec.sub_questions.items():
            prepared.subs[title] = self._prepare_conditions(identity, sub_spec, oracle)
        return prepared

    def _validate_conditions(self, prepared: _PreparedQuestion) -> None:
        condition = prepared.condition
        if not self.validate_market_creation(condition.id, condition.outcome_slot_count):
            raise LedgerCallFailed(
                f"Condition {condition.id.hex()} for `{condition.question}` doesn't have {condition.outcome_slot_count} outcome slots.",
                function_name="getOutcomeSlotCount",
                target=self.conditional_tokens.address,
                function_params=[condition.id],
            )
        for sub in prepared.subs.values():
            self._validate_conditions(sub)

    def _fund_operator(
        self,
        operator: SigningIdentity,
        collateral_token_contract: ContractERC20BaseClass,
        collateral: CollateralToken,
        required: Wei,
    ) -> None:
        if isinstance(
            collateral_token_contract, ContractDepositableWrapperERC20BaseClass
        ):
            auto_deposit_depositable_wrapper_erc20(
                collateral_token_contract, required, operator, web3=self.web3
            )
            return

        balance = collateral_token_contract.balanceOf(operator.address, web3=self.web3)
        if balance < required:
            raise InsufficientFunds(
                shortfall=from_minor_units(required - balance, collateral.decimals),
                cost=from_minor_units(required, collateral.decimals),
                symbol=collateral.symbol,
            )

    def _deploy_markets(
        self,
        operator: SigningIdentity,
        prepared: _PreparedQuestion,
        collateral: CollateralToken,
        oracle: Oracle,
        initial_liquidity: Decimal,
        parent_collection_id: HexBytes | None,
    ) -> PredictionMarket:
        condition = prepared.condition
        creation = self.factory.createLMSRMarketMaker(
            operator,
            conditional_tokens_address=self.conditional_tokens.address,
            collateral_token_address=collateral.address,
            condition_ids=[condition.id],
            fee=self.trading_config.MARKET_FEE,
            funding=to_minor_units(initial_liquidity, collateral.decimals),
            web3=self.web3,
        )
        market = PredictionMarket(
            address=Web3.to_checksum_address(creation.lmsrMarketMaker),
            type=MarketType.LMSR,
            chain_id=self.chain_id,
            question=condition.question,
            question_id=condition.question_id,
            condition_id=condition.id,
            collateral_token=collateral,
            oracle=oracle,
            creator=operator.address,
            initial_liquidity=initial_liquidity,
            outcomes=[
                OutcomeToken(title=title, token_index=index)
                for index, title in enumerate(prepared.spec.outcomes)
            ],
            parent_collection_id=parent_collection_id,
            started_at=utcnow(),
        )
        logger.info(f"Deployed {market}.")

        if prepared.subs:
            market.sub_markets = {}
            for title, sub in prepared.subs.items():
                outcome = market.get_outcome(market.get_outcome_index(title))
                outcome.collection_id = self.positions.collection_id(
                    condition.id,
                    outcome.token_index,
                    parent_collection_id=parent_collection_id,
                    web3=self.web3,
                )
                sub_market = self._deploy_markets(
                    operator,
                    sub,
                    collateral,
                    oracle,
                    initial_liquidity,
                    parent_collection_id=outcome.collection_id,
                )
                outcome.sub = sub_market.outcomes
                market.sub_markets[outcome.title] = sub_market

        return market

    def create_market(
        self,
        question: str,
        outcome_titles: t.Sequence[str],
        initial_liquidity: Decimal | float | int,
        oracle: Oracle | None = None,
        sub_questions: SubQuestions | None = None,
    ) -> PredictionMarket:
        spec = QuestionSpec(
            question=question,
            outcomes=[OutcomeStr(title) for title in outcome_titles],
            sub_questions={
                OutcomeStr(title): (
                    sub if isinstance(sub, QuestionSpec) else QuestionSpec(question=sub)
                )
                for title, sub in (sub_questions or {}).items()
            },
        )
        self._check_question_spec(spec)

        operator = self.accounts.operator()
        oracle = oracle or Oracle(address=self.accounts.oracle().address)
        initial_liquidity = Decimal(str(initial_liquidity))
        if initial_liquidity <= 0:
            raise ValueError(f"Initial liquidity must be positive, got {initial_liquidity}.")

        collateral_token_contract = init_collateral_token_contract(
            self.collateral_token_address, web3=self.web3
        )
        collateral = CollateralToken(
            address=collateral_token_contract.address,
            symbol=collateral_token_contract.symbol_cached(web3=self.web3),
            decimals=collateral_token_contract.decimals_cached(web3=self.web3),
        )
        logger.info(
            f"Creating market `{question}` with {spec.markets_count} market maker(s) funded by {initial_liquidity} {collateral.symbol} each."
        )

        prepared = self._prepare_conditions(operator, spec, oracle)
        self._validate_conditions(prepared)

        required_liquidity = Wei(
            to_minor_units(initial_liquidity, collateral.decimals) * spec.markets_count
        )
        self._fund_operator(
            operator, collateral_token_contract, collateral, required_liquidity
        )
        collateral_token_contract.approve(
            operator, self.factory.address, required_liquidity, web3=self.web3
        )
        logger.info(
            f"Approved {required_liquidity} of {collateral.symbol} for the market maker factory."
        )

        market = self._deploy_markets(
            operator,
            prepared,
            collateral,
            oracle,
            initial_liquidity,
            parent_collection_id=None,
        )
        self.store.update(market, new_market=True)
        return market

    def _check_question_spec(self, spec: QuestionSpec) -> None:
        if len(spec.outcomes) < 2:
            raise InvalidOutcome(
                f"A market needs at least 2 outcomes, `{spec.question}` has {len(spec.outcomes)}."
            )
        if len(set(spec.outcomes)) != len(spec.outcomes):
            raise InvalidOutcome(f"Outcomes of `{spec.question}` must be unique.")
        for title, sub_spec in spec.sub_questions.items():
            if title not in spec.outcomes:
                raise InvalidOutcome(
                    f"Sub-question `{sub_spec.question}` refers to unknown outcome `{title}`."
                )
            self._check_question_spec(sub_spec)

    def _close_markets(
        self, operator: SigningIdentity, market: PredictionMarket
    ) -> list[TxReceipt]:
        receipts: list[TxReceipt] = []
        if market.closed_at is None:
            market_maker = LMSRMarketMakerContract(address=market.address)
            if market_maker.stage(web3=self.web3) == MarketMakerStage.CLOSED:
                logger.warning(f"{market} was already closed on the ledger.")
            else:
                receipts.append(market_maker.close(operator, web3=self.web3))
                logger.info(f"Closed {market}.")
            market.closed_at = utcnow()

        for sub_market in (market.sub_markets or {}).values():
            receipts.extend(self._close_markets(operator, sub_market))
        return receipts

    def close_market(self, market: PredictionMarket) -> TxReceipt | None:
        """
        Closes the market maker (and the ones of its sub-markets), returning the receipt of the first close sent.
        Closing a closed market does nothing and returns None.

        Each market is marked closed as soon as its own market maker is, and that is persisted even if closing
        a sub-market fails, so calling this again only closes what's left.
        """
        if all(m.closed_at is not None for m in market.iter_markets()):
            logger.info(f"{market} is already closed.")
            return None

        receipts: list[TxReceipt] = []
        try:
            receipts = self._close_markets(self.accounts.operator(), market)
        finally:
            self.store.update(market)
        return receipts[0] if receipts else None

    def is_resolved_on_ledger(self, market: PredictionMarket) -> bool:
        return self.conditional_tokens.is_condition_resolved(
            market.condition_id, web3=self.web3
        )

    def resolve_market(
        self,
        market: PredictionMarket,
        payout_vector: t.Sequence[int | float | Decimal | Fraction],
    ) -> TxReceipt:
        numerators = payout_numerators(payout_vector, market.outcome_slot_count)

        match market.oracle.type:
            case OracleType.CENTRALIZED:
                oracle_identity = self.accounts.oracle()
                if oracle_identity.address != market.oracle.address:
                    raise ValueError(
                        f"Configured oracle {oracle_identity.address} isn't the oracle of {market}, which is {market.oracle.address}."
                    )
            case OracleType.DECENTRALIZED:
                raise VariantNotImplemented(
                    "Resolution through a decentralized oracle is not implemented yet."
                )

        if self.is_resolved_on_ledger(market):
            raise ConditionAlreadyResolved(
                f"Payouts of {market} were already reported, condition {market.condition_id.hex()}."
            )

        if market.closed_at is None:
            self.close_market(market)

        receipt, resolutions = self.conditional_tokens.reportPayouts(
            oracle_identity, market.question_id, numerators, web3=self.web3
        )
        for resolution in resolutions:
            logger.info(
                f"Condition {resolution.conditionId.hex()} resolved with payouts {resolution.payoutNumerators}."
            )

        total = sum(numerators)
        for outcome, numerator in zip(market.outcomes, numerators):
            outcome.trueness_ratio = numerator / total
        market.resolved_at = utcnow()
        self.store.update(market)
        logger.info(f"Resolved {market} with payouts {numerators}.")
        return receipt

    def redeem(
        self,
        trader: SigningIdentity,
        market: PredictionMarket,
        outcome_index: int | None = None,
    ) -> RedemptionResult:
        index_sets = (
            [outcome_index_to_index_set(outcome.token_index) for outcome in market.outcomes]
            if outcome_index is None
            else [outcome_index_to_index_set(market.get_outcome(outcome_index).token_index)]
        )
        receipt, redemptions = self.conditional_tokens.redeemPositions(
            trader,
            collateral_token_address=market.collateral_token.address,
            condition_id=market.condition_id,
            index_sets=index_sets,
            parent_collection_id=market.parent_collection_id or ROOT_COLLECTION_ID,
            web3=self.web3,
        )
        result = RedemptionResult(receipt=receipt, redemptions=redemptions)

        payout = from_minor_units(result.total_payout, market.collateral_token.decimals)
        if result.total_payout == 0:
            logger.warning(
                f"{trader} redeemed nothing from {market}, there were no winning positions to redeem."
            )
        else:
            logger.info(
                f"{trader} redeemed {payout} {market.collateral_token.symbol} from {market}."
            )
        return result
