import os
import typing as t

from web3 import Web3
from web3.constants import HASH_ZERO

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.errors import LedgerCallFailed
from lmsr_market_tooling.gtypes import (
    ABI,
    ChecksumAddress,
    HexBytes,
    OutcomeWei,
    TxParams,
    TxReceipt,
)
from lmsr_market_tooling.markets.data_models import (
    ConditionPreparationEvent,
    ConditionResolutionEvent,
    PayoutRedemptionEvent,
)
from lmsr_market_tooling.tools.contract import (
    ABIS_DIR,
    ContractBaseClass,
    abi_field_validator,
)


class ConditionalTokenContract(ContractBaseClass):
    # Gnosis ConditionalTokens (ERC-1155), the ledger of every condition and position.
    abi: ABI = abi_field_validator(
        os.path.join(ABIS_DIR, "conditional_tokens.abi.json")
    )

    def getConditionId(
        self,
        question_id: HexBytes,
        oracle_address: ChecksumAddress,
        outcomes_slot_count: int,
        web3: Web3 | None = None,
    ) -> HexBytes:
        id_ = HexBytes(
            self.call(
                "getConditionId",
                [oracle_address, question_id, outcomes_slot_count],
                web3=web3,
            )
        )
        return id_

    def getCollectionId(
        self,
        parent_collection_id: HexBytes,
        condition_id: HexBytes,
        index_set: int,
        web3: Web3 | None = None,
    ) -> HexBytes:
        collection_id = HexBytes(
            self.call(
                "getCollectionId",
                [parent_collection_id, condition_id, index_set],
                web3=web3,
            )
        )
        return collection_id

    def getPositionId(
        self,
        collateral_token_address: ChecksumAddress,
        collection_id: HexBytes,
        web3: Web3 | None = None,
    ) -> int:
        position_id: int = self.call(
            "getPositionId",
            [collateral_token_address, collection_id],
            web3=web3,
        )
        return position_id

    def balanceOf(
        self, from_address: ChecksumAddress, position_id: int, web3: Web3 | None = None
    ) -> OutcomeWei:
        balance = OutcomeWei(
            self.call("balanceOf", [from_address, position_id], web3=web3)
        )
        return balance

    def getOutcomeSlotCount(
        self, condition_id: HexBytes, web3: Web3 | None = None
    ) -> int:
        count: int = self.call("getOutcomeSlotCount", [condition_id], web3=web3)
        return count

    def does_condition_exists(
        self, condition_id: HexBytes, web3: Web3 | None = None
    ) -> bool:
        return self.getOutcomeSlotCount(condition_id, web3=web3) > 0

    def payoutDenominator(
        self, condition_id: HexBytes, web3: Web3 | None = None
    ) -> int:
        payoutForCondition: int = self.call(
            "payoutDenominator", [condition_id], web3=web3
        )
        return payoutForCondition

    def is_condition_resolved(
        self, condition_id: HexBytes, web3: Web3 | None = None
    ) -> bool:
        # The ledger sets the denominator only when the oracle reports payouts.
        return self.payoutDenominator(condition_id, web3=web3) > 0

    def isApprovedForAll(
        self,
        owner: ChecksumAddress,
        for_address: ChecksumAddress,
        web3: Web3 | None = None,
    ) -> bool:
        is_approved: bool = self.call(
            "isApprovedForAll", [owner, for_address], web3=web3
        )
        return is_approved

    def setApprovalForAll(
        self,
        identity: SigningIdentity,
        for_address: ChecksumAddress,
        approve: bool,
        skip_confirmation: bool = False,
        web3: Web3 | None = None,
    ) -> TxReceipt | HexBytes:
        result: TxReceipt | HexBytes = self.invoke(
            "setApprovalForAll",
            for_address,
            approve,
            identity=identity,
            skip_confirmation=skip_confirmation,
            web3=web3,
        )
        return result

    def prepareCondition(
        self,
        identity: SigningIdentity,
        oracle_address: ChecksumAddress,
        question_id: HexBytes,
        outcomes_slot_count: int,
        tx_params: t.Optional[TxParams] = None,
        web3: Web3 | None = None,
    ) -> ConditionPreparationEvent:
        receipt_tx = self.send(
            identity=identity,
            function_name="prepareCondition",
            function_params=[
                oracle_address,
                question_id,
                outcomes_slot_count,
            ],
            tx_params=tx_params,
            web3=web3,
        )
        event_logs = self.get_event_from_receipt(
            receipt_tx, "ConditionPreparation", web3=web3
        )
        if not event_logs:
            raise LedgerCallFailed(
                f"Condition for question {question_id.hex()} was prepared, but no ConditionPreparation event was emitted.",
                function_name="prepareCondition",
                target=self.address,
                function_params=[oracle_address, question_id, outcomes_slot_count],
            )
        return ConditionPreparationEvent(**event_logs[0]["args"])

    def reportPayouts(
        self,
        identity: SigningIdentity,
        question_id: HexBytes,
        payouts: list[int],
        web3: Web3 | None = None,
    ) -> tuple[TxReceipt, list[ConditionResolutionEvent]]:
        receipt_tx = self.send(
            identity=identity,
            function_name="reportPayouts",
            function_params=[question_id, payouts],
            web3=web3,
        )
        resolutions = [
            ConditionResolutionEvent(**event["args"])
            for event in self.get_event_from_receipt(
                receipt_tx, "ConditionResolution", web3=web3
            )
        ]
        return receipt_tx, resolutions

    def redeemPositions(
        self,
        identity: SigningIdentity,
        collateral_token_address: ChecksumAddress,
        condition_id: HexBytes,
        index_sets: t.List[int],
        parent_collection_id: HexBytes = HexBytes(HASH_ZERO),
        web3: Web3 | None = None,
    ) -> tuple[TxReceipt, list[PayoutRedemptionEvent]]:
        receipt_tx = self.send(
            identity=identity,
            function_name="redeemPositions",
            function_params=[
                collateral_token_address,
                parent_collection_id,
                condition_id,
                index_sets,
            ],
            web3=web3,
        )
        redemptions = [
            PayoutRedemptionEvent(**event["args"])
            for event in self.get_event_from_receipt(
                receipt_tx, "PayoutRedemption", web3=web3
            )
        ]
        return receipt_tx, redemptions
