import typing as t

from eth_typing import URI
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from web3 import Web3

from lmsr_market_tooling.gtypes import (
    ChainID,
    ChecksumAddress,
    PrivateKey,
    private_key_type,
)
from lmsr_market_tooling.tools.utils import check_not_none

# Well-known development mnemonic of Ganache/Anvil, gives the same funded accounts on every local chain.
DEFAULT_DEV_MNEMONIC = "test test test test test test test test test test test junk"


def _to_checksum_or_none(value: t.Any) -> ChecksumAddress | None:
    return Web3.to_checksum_address(value) if value else None


class LedgerConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    RPC_URL: URI = Field(default=URI("http://127.0.0.1:8545"))
    CHAIN_ID: ChainID = Field(default=ChainID(1337))

    @property
    def rpc_url(self) -> URI:
        return check_not_none(self.RPC_URL, "RPC_URL missing in the environment.")

    @property
    def chain_id(self) -> ChainID:
        return check_not_none(self.CHAIN_ID, "CHAIN_ID missing in the environment.")

    def get_web3(self) -> Web3:
        return Web3(Web3.HTTPProvider(self.rpc_url))


class ContractsConfig(BaseSettings):
    """
    Addresses of the deployed ledger contracts. They differ for every chain (and every local deployment), so there are no defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    CONDITIONAL_TOKENS_ADDRESS: t.Optional[ChecksumAddress] = None
    LMSR_FACTORY_ADDRESS: t.Optional[ChecksumAddress] = None
    COLLATERAL_TOKEN_ADDRESS: t.Optional[ChecksumAddress] = None

    _checksum = field_validator(
        "CONDITIONAL_TOKENS_ADDRESS",
        "LMSR_FACTORY_ADDRESS",
        "COLLATERAL_TOKEN_ADDRESS",
        mode="before",
    )(_to_checksum_or_none)

    @property
    def conditional_tokens_address(self) -> ChecksumAddress:
        return check_not_none(
            self.CONDITIONAL_TOKENS_ADDRESS,
            "CONDITIONAL_TOKENS_ADDRESS missing in the environment.",
        )

    @property
    def lmsr_factory_address(self) -> ChecksumAddress:
        return check_not_none(
            self.LMSR_FACTORY_ADDRESS,
            "LMSR_FACTORY_ADDRESS missing in the environment.",
        )

    @property
    def collateral_token_address(self) -> ChecksumAddress:
        return check_not_none(
            self.COLLATERAL_TOKEN_ADDRESS,
            "COLLATERAL_TOKEN_ADDRESS missing in the environment.",
        )


class AccountKeys(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    OPERATOR_PRIVATE_KEY: t.Optional[PrivateKey] = None
    ORACLE_PRIVATE_KEY: t.Optional[PrivateKey] = None
    # Comma separated private keys, trader `i` uses the `i`-th one.
    TRADER_PRIVATE_KEYS: t.Optional[SecretStr] = None
    ACCOUNTS_MNEMONIC: str = DEFAULT_DEV_MNEMONIC

    @property
    def trader_private_keys(self) -> list[PrivateKey]:
        if self.TRADER_PRIVATE_KEYS is None:
            return []
        return [
            private_key_type(k.strip())
            for k in self.TRADER_PRIVATE_KEYS.get_secret_value().split(",")
            if k.strip()
        ]


class TradingConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Extra collateral reserved above the quoted cost, as a fraction of it.
    TRADE_SLIPPAGE: float = Field(default=0.01, ge=0)
    # Convert the trader's native balance into collateral when it isn't enough for a buy.
    AUTO_TOP_UP: bool = True
    # LMSR market fee, where 10**18 is 100%.
    MARKET_FEE: int = Field(default=0, ge=0)
    RECEIPT_TIMEOUT: int = 180


class StorageConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    MARKETS_FILE: str = "./.markets.json"
    MARKETS_MAX_KEPT: int = 10
