import os
from enum import Enum

from web3 import Web3
from web3.constants import ADDRESS_ZERO

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.errors import LedgerCallFailed
from lmsr_market_tooling.gtypes import (
    ABI,
    ChecksumAddress,
    HexBytes,
    TxParams,
    TxReceipt,
    Wei,
)
from lmsr_market_tooling.markets.data_models import (
    AMMOutcomeTokenTradeEvent,
    LMSRMarketMakerCreationEvent,
)
from lmsr_market_tooling.tools.contract import (
    ABIS_DIR,
    ContractBaseClass,
    abi_field_validator,
)

# calcMarginalPrice returns a 64.64 fixed point number.
MARGINAL_PRICE_ONE = 2**64


class MarketMakerStage(int, Enum):
    RUNNING = 0
    PAUSED = 1
    CLOSED = 2


class LMSRMarketMakerContract(ContractBaseClass):
    # Gnosis LMSRMarketMaker from the conditional-tokens-market-makers repository.
    abi: ABI = abi_field_validator(
        os.path.join(ABIS_DIR, "lmsr_market_maker.abi.json")
    )

    def calcNetCost(
        self, outcome_token_amounts: list[int], web3: Web3 | None = None
    ) -> Wei:
        """
        Collateral the AMM charges (positive) or pays out (negative) for the given outcome token deltas.
        """
        net_cost: int = self.call(
            "calcNetCost", [list(outcome_token_amounts)], web3=web3
        )
        return Wei(net_cost)

    def calcMarginalPrice(
        self,
        outcome_index: int,
        call_from: ChecksumAddress | None = None,
        web3: Web3 | None = None,
    ) -> int:
        price: int = self.call(
            "calcMarginalPrice",
            [outcome_index],
            web3=web3,
            call_params=TxParams({"from": call_from or self.address}),
        )
        return price

    def trade(
        self,
        identity: SigningIdentity,
        outcome_token_amounts: list[int],
        collateral_limit: int,
        web3: Web3 | None = None,
    ) -> TxReceipt:
        return self.send(
            identity=identity,
            function_name="trade",
            function_params=[list(outcome_token_amounts), collateral_limit],
            web3=web3,
        )

    def get_trade_events(
        self, receipt: TxReceipt, web3: Web3 | None = None
    ) -> list[AMMOutcomeTokenTradeEvent]:
        return [
            AMMOutcomeTokenTradeEvent(**event["args"])
            for event in self.get_event_from_receipt(
                receipt, "AMMOutcomeTokenTrade", web3=web3
            )
        ]

    def close(self, identity: SigningIdentity, web3: Web3 | None = None) -> TxReceipt:
        receipt: TxReceipt = self.invoke("close", identity=identity, web3=web3)
        return receipt

    def fee(self, web3: Web3 | None = None) -> int:
        fee: int = self.call("fee", web3=web3)
        return fee

    def funding(self, web3: Web3 | None = None) -> Wei:
        return Wei(self.call("funding", web3=web3))

    def stage(self, web3: Web3 | None = None) -> MarketMakerStage:
        return MarketMakerStage(self.call("stage", web3=web3))


class LMSRMarketMakerFactoryContract(ContractBaseClass):
    abi: ABI = abi_field_validator(
        os.path.join(ABIS_DIR, "lmsr_market_maker_factory.abi.json")
    )

    def createLMSRMarketMaker(
        self,
        identity: SigningIdentity,
        conditional_tokens_address: ChecksumAddress,
        collateral_token_address: ChecksumAddress,
        condition_ids: list[HexBytes],
        fee: int,
        funding: Wei,
        whitelist: ChecksumAddress = Web3.to_checksum_address(ADDRESS_ZERO),
        web3: Web3 | None = None,
    ) -> LMSRMarketMakerCreationEvent:
        function_params = [
            conditional_tokens_address,
            collateral_token_address,
            condition_ids,
            fee,
            whitelist,
            funding,
        ]
        receipt_tx = self.send(
            identity=identity,
            function_name="createLMSRMarketMaker",
            function_params=function_params,
            web3=web3,
        )
        creation_logs = self.get_event_from_receipt(
            receipt_tx, "LMSRMarketMakerCreation", web3=web3
        )
        if not creation_logs or not creation_logs[0]["args"].get("lmsrMarketMaker"):
            raise LedgerCallFailed(
                f"Market maker creation went through, but its address can't be found in the receipt of transaction {receipt_tx.get('transactionHash')!r}.",
                function_name="createLMSRMarketMaker",
                target=self.address,
                function_params=function_params,
            )
        return LMSRMarketMakerCreationEvent(**creation_logs[0]["args"])
