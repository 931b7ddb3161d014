from decimal import Decimal
from pathlib import Path

from web3 import Web3

from lmsr_market_tooling.accounts import AccountProvider
from lmsr_market_tooling.config import DEFAULT_DEV_MNEMONIC, AccountKeys, TradingConfig
from lmsr_market_tooling.gtypes import ChainID, HexBytes, OutcomeStr
from lmsr_market_tooling.market_store import MarketStore
from lmsr_market_tooling.markets.conditional_tokens.ctf_contracts import (
    ConditionalTokenContract,
)
from lmsr_market_tooling.markets.data_models import (
    BINARY_OUTCOMES,
    CollateralToken,
    Oracle,
    OutcomeToken,
    PredictionMarket,
)
from lmsr_market_tooling.markets.lmsr.lmsr_contracts import (
    LMSRMarketMakerFactoryContract,
)
from lmsr_market_tooling.service import PredictionMarketService
from lmsr_market_tooling.tools.utils import utcnow
from tests.fake_ledger import FakeLedger, label_to_address

# Addresses derived from the development mnemonic.
OPERATOR_ADDRESS = Web3.to_checksum_address("0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266")
ORACLE_ADDRESS = Web3.to_checksum_address("0x70997970C51812dc3A010C7d01b50e0d17dc79C8")
FIRST_TRADER_ADDRESS = Web3.to_checksum_address(
    "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
)
# Private key of the operator above.
OPERATOR_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)

ONE = 10**18


def dev_account_keys() -> AccountKeys:
    return AccountKeys(
        OPERATOR_PRIVATE_KEY=None,
        ORACLE_PRIVATE_KEY=None,
        TRADER_PRIVATE_KEYS=None,
        ACCOUNTS_MNEMONIC=DEFAULT_DEV_MNEMONIC,
    )


def build_service(
    ledger: FakeLedger,
    store_path: Path,
    web3: Web3,
    trading_config: TradingConfig | None = None,
) -> PredictionMarketService:
    return PredictionMarketService(
        conditional_tokens=ConditionalTokenContract(
            address=ledger.conditional_tokens_address
        ),
        factory=LMSRMarketMakerFactoryContract(address=ledger.factory_address),
        accounts=AccountProvider(dev_account_keys()),
        store=MarketStore(store_path),
        collateral_token_address=ledger.collateral_address,
        chain_id=ChainID(1337),
        trading_config=trading_config
        or TradingConfig(TRADE_SLIPPAGE=0.01, AUTO_TOP_UP=True, MARKET_FEE=0),
        web3=web3,
    )


def build_market(
    label: str,
    question: str = "Will it rain tomorrow?",
    outcomes: list[OutcomeStr] = BINARY_OUTCOMES,
    sub_markets: dict[OutcomeStr, PredictionMarket] | None = None,
) -> PredictionMarket:
    return PredictionMarket(
        address=label_to_address(label),
        chain_id=ChainID(1337),
        question=question,
        question_id=HexBytes(Web3.keccak(text=question)),
        condition_id=HexBytes(Web3.keccak(text=f"condition-{label}")),
        collateral_token=CollateralToken(
            address=label_to_address("collateral"), symbol="WETH", decimals=18
        ),
        oracle=Oracle(address=ORACLE_ADDRESS),
        creator=OPERATOR_ADDRESS,
        initial_liquidity=Decimal("1"),
        outcomes=[
            OutcomeToken(title=title, token_index=index)
            for index, title in enumerate(outcomes)
        ],
        sub_markets=sub_markets,
        started_at=utcnow(),
    )
