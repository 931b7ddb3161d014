import typing as t
from contextlib import contextmanager
from enum import Enum
from typing import Any, Optional

from web3 import Web3
from web3.constants import HASH_ZERO
from web3.exceptions import ContractLogicError

from lmsr_market_tooling.accounts import SigningIdentity
from lmsr_market_tooling.errors import LedgerCallFailed, SequencingConflict
from lmsr_market_tooling.gtypes import (
    ABI,
    ChecksumAddress,
    HexBytes,
    TxParams,
    TxReceipt,
    Wei,
)
from lmsr_market_tooling.loggers import logger

ZERO_BYTES = HexBytes(HASH_ZERO)
# Node implementations word these differently, all of them mean the nonce was already taken.
SEQUENCING_CONFLICT_MESSAGES = (
    "nonce too low",
    "incorrect nonce",
    "correct nonce",
    "nonce has already been used",
    "replacement transaction underpriced",
    "transaction underpriced",
)
REVERTED_MESSAGES = ("revert",)


class LedgerFailureReason(str, Enum):
    SEQUENCING_CONFLICT = "sequencing_conflict"
    REVERTED = "reverted"
    OTHER = "other"


def _error_message(exc: BaseException) -> str:
    # web3 v7 attaches the JSON-RPC response, older versions pass the error dict as the first arg.
    rpc_response = getattr(exc, "rpc_response", None)
    if isinstance(rpc_response, dict) and isinstance(rpc_response.get("error"), dict):
        return str(rpc_response["error"].get("message", ""))
    if exc.args and isinstance(exc.args[0], dict):
        return str(exc.args[0].get("message", ""))
    return str(exc)


def classify_ledger_error(exc: BaseException) -> LedgerFailureReason:
    if isinstance(exc, SequencingConflict):
        return LedgerFailureReason.SEQUENCING_CONFLICT
    if isinstance(exc, ContractLogicError):
        return LedgerFailureReason.REVERTED

    message = _error_message(exc).lower()
    if any(pattern in message for pattern in SEQUENCING_CONFLICT_MESSAGES):
        return LedgerFailureReason.SEQUENCING_CONFLICT
    if any(pattern in message for pattern in REVERTED_MESSAGES):
        return LedgerFailureReason.REVERTED
    return LedgerFailureReason.OTHER


@contextmanager
def translate_ledger_errors(
    function_name: str, target: ChecksumAddress, function_params: Any
) -> t.Generator[None, None, None]:
    """
    Re-raises nonce conflicts as `SequencingConflict`, everything else passes through untouched.
    """
    try:
        yield
    except SequencingConflict:
        raise
    except Exception as e:
        if classify_ledger_error(e) == LedgerFailureReason.SEQUENCING_CONFLICT:
            raise SequencingConflict(
                f"Sequencing conflict while calling `{function_name}` on {target}: {_error_message(e)}",
                function_name=function_name,
                target=target,
                function_params=function_params,
            ) from e
        raise


def check_tx_receipt(
    receipt: TxReceipt,
    function_name: str | None = None,
    target: ChecksumAddress | None = None,
    function_params: Any = None,
) -> None:
    if receipt["status"] != 1:
        raise LedgerCallFailed(
            f"Transaction `{function_name}` on {target} failed with status code {receipt['status']}. Receipt: {receipt}",
            function_name=function_name,
            target=target,
            function_params=function_params,
        )


def parse_function_params(
    params: Optional[list[Any] | tuple[Any] | dict[str, Any]]
) -> list[Any] | tuple[Any]:
    if params is None:
        return []
    if isinstance(params, (list, tuple)):
        return params
    if isinstance(params, dict):
        return list(params.values())
    raise ValueError(f"Invalid type for function parameters: {type(params)}")


def call_function_on_contract(
    web3: Web3,
    contract_address: ChecksumAddress,
    contract_abi: ABI,
    function_name: str,
    function_params: Optional[list[Any] | dict[str, Any]] = None,
    call_params: Optional[TxParams] = None,
) -> Any:
    contract = web3.eth.contract(address=contract_address, abi=contract_abi)
    output = contract.functions[function_name](
        *parse_function_params(function_params)
    ).call(call_params)
    return output


def _prepare_tx_params(
    web3: Web3,
    from_address: ChecksumAddress,
    tx_params: Optional[TxParams] = None,
) -> TxParams:
    tx_params_new = TxParams()
    if tx_params:
        tx_params_new.update(tx_params)

    if not tx_params_new.get("from"):
        tx_params_new["from"] = from_address

    if not tx_params_new.get("nonce"):
        # Pending, so fire-and-forget transactions of the same account are accounted for.
        tx_params_new["nonce"] = web3.eth.get_transaction_count(
            Web3.to_checksum_address(tx_params_new["from"]), "pending"
        )

    if not tx_params_new.get("chainId"):
        tx_params_new["chainId"] = web3.eth.chain_id

    return tx_params_new


def prepare_tx(
    web3: Web3,
    contract_address: ChecksumAddress,
    contract_abi: ABI,
    from_address: ChecksumAddress,
    function_name: str,
    function_params: Optional[list[Any] | dict[str, Any]] = None,
    tx_params: Optional[TxParams] = None,
) -> TxParams:
    tx_params_new = _prepare_tx_params(web3, from_address, tx_params)
    contract = web3.eth.contract(address=contract_address, abi=contract_abi)
    function_call = contract.functions[function_name](
        *parse_function_params(function_params)
    )
    built_tx_params: TxParams = function_call.build_transaction(tx_params_new)
    return built_tx_params


def sign_and_send_tx(
    web3: Web3, tx_params: TxParams, identity: SigningIdentity
) -> HexBytes:
    signed_tx = identity.sign_transaction(tx_params)
    return HexBytes(web3.eth.send_raw_transaction(signed_tx.raw_transaction))


def send_function_on_contract_tx_no_wait(
    web3: Web3,
    contract_address: ChecksumAddress,
    contract_abi: ABI,
    identity: SigningIdentity,
    function_name: str,
    function_params: Optional[list[Any] | dict[str, Any]] = None,
    tx_params: Optional[TxParams] = None,
) -> HexBytes:
    with translate_ledger_errors(function_name, contract_address, function_params):
        built_tx_params = prepare_tx(
            web3=web3,
            contract_address=contract_address,
            contract_abi=contract_abi,
            from_address=identity.address,
            function_name=function_name,
            function_params=function_params,
            tx_params=tx_params,
        )
        tx_hash = sign_and_send_tx(web3, built_tx_params, identity)
    logger.debug(
        f"Sent `{function_name}` on {contract_address} from {identity}, tx hash {tx_hash.hex()}."
    )
    return tx_hash


def send_function_on_contract_tx(
    web3: Web3,
    contract_address: ChecksumAddress,
    contract_abi: ABI,
    identity: SigningIdentity,
    function_name: str,
    function_params: Optional[list[Any] | dict[str, Any]] = None,
    tx_params: Optional[TxParams] = None,
    timeout: int = 180,
) -> TxReceipt:
    tx_hash = send_function_on_contract_tx_no_wait(
        web3=web3,
        contract_address=contract_address,
        contract_abi=contract_abi,
        identity=identity,
        function_name=function_name,
        function_params=function_params,
        tx_params=tx_params,
    )
    receipt_tx = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    check_tx_receipt(receipt_tx, function_name, contract_address, function_params)
    return receipt_tx


def get_native_balance(web3: Web3, address: ChecksumAddress) -> Wei:
    return Wei(web3.eth.get_balance(address))


def get_contract_code(web3: Web3, address: ChecksumAddress) -> HexBytes:
    return HexBytes(web3.eth.get_code(address))
