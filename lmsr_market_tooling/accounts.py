from enum import Enum

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_account.signers.local import LocalAccount
from pydantic import BaseModel, ConfigDict
from web3 import Web3

from lmsr_market_tooling.config import AccountKeys
from lmsr_market_tooling.gtypes import (
    ChecksumAddress,
    PrivateKey,
    TxParams,
    private_key_type,
)
from lmsr_market_tooling.loggers import logger

Account.enable_unaudited_hdwallet_features()

# Derivation offsets inside the mnemonic, traders come after the reserved accounts.
OPERATOR_DERIVATION_INDEX = 0
ORACLE_DERIVATION_INDEX = 1
FIRST_TRADER_DERIVATION_INDEX = 2


class AccountRole(str, Enum):
    OPERATOR = "operator"
    ORACLE = "oracle"
    TRADER = "trader"


class SigningIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: AccountRole
    index: int
    address: ChecksumAddress
    private_key: PrivateKey

    def get_account(self) -> LocalAccount:
        acc: LocalAccount = Account.from_key(self.private_key.get_secret_value())
        return acc

    def sign_transaction(self, tx_params: TxParams) -> SignedTransaction:
        return self.get_account().sign_transaction(tx_params)  # type: ignore[arg-type]

    def __str__(self) -> str:
        return f"{self.role.value}#{self.index} ({self.address})"


def private_key_to_identity(
    private_key: PrivateKey, role: AccountRole, index: int = 0
) -> SigningIdentity:
    account = Account.from_key(private_key.get_secret_value())
    return SigningIdentity(
        role=role,
        index=index,
        address=Web3.to_checksum_address(account.address),
        private_key=private_key,
    )


class AccountProvider:
    """
    Deterministic signing identities per role and index.
    Explicitly configured private keys win, everything else is derived from the configured mnemonic.
    """

    def __init__(self, keys: AccountKeys | None = None) -> None:
        self.keys = keys or AccountKeys()

    def get_signing_identity(
        self, role: AccountRole, index: int = 0
    ) -> SigningIdentity:
        if index < 0:
            raise ValueError(f"Account index must be non-negative, got {index}.")

        match role:
            case AccountRole.OPERATOR:
                explicit_key = self.keys.OPERATOR_PRIVATE_KEY
                derivation_index = OPERATOR_DERIVATION_INDEX
            case AccountRole.ORACLE:
                explicit_key = self.keys.ORACLE_PRIVATE_KEY
                derivation_index = ORACLE_DERIVATION_INDEX
            case AccountRole.TRADER:
                trader_keys = self.keys.trader_private_keys
                explicit_key = trader_keys[index] if index < len(trader_keys) else None
                derivation_index = FIRST_TRADER_DERIVATION_INDEX + index

        if explicit_key is not None:
            return private_key_to_identity(explicit_key, role, index)

        logger.debug(
            f"No explicit key for {role.value}#{index}, deriving it from the mnemonic at index {derivation_index}."
        )
        account = Account.from_mnemonic(
            self.keys.ACCOUNTS_MNEMONIC,
            account_path=f"m/44'/60'/0'/0/{derivation_index}",
        )
        return private_key_to_identity(
            private_key_type(Web3.to_hex(account.key)), role, index
        )

    def operator(self) -> SigningIdentity:
        return self.get_signing_identity(AccountRole.OPERATOR)

    def oracle(self) -> SigningIdentity:
        return self.get_signing_identity(AccountRole.ORACLE)

    def trader(self, index: int) -> SigningIdentity:
        return self.get_signing_identity(AccountRole.TRADER, index)
