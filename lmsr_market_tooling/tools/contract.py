import json
import os
import typing as t

from eth_utils import event_abi_to_log_topic
from pydantic import BaseModel, field_validator
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)
from web3 import Web3
from web3.contract.contract import Contract as Web3Contract
from web3.types import EventData

from lmsr_market_tooling.accounts import AccountProvider, SigningIdentity
from lmsr_market_tooling.config import LedgerConfig, TradingConfig
from lmsr_market_tooling.errors import (
    EventNotFound,
    SequencingConflict,
    UnsupportedCollateral,
)
from lmsr_market_tooling.gtypes import (
    ABI,
    ChecksumAddress,
    HexBytes,
    TxParams,
    TxReceipt,
    Wei,
)
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.tools.utils import summarize_error
from lmsr_market_tooling.tools.web3_utils import (
    call_function_on_contract,
    get_contract_code,
    send_function_on_contract_tx,
    send_function_on_contract_tx_no_wait,
)

T = t.TypeVar("T")

ABIS_DIR = os.path.join(os.path.dirname(os.path.realpath(__file__)), "../abis")


def abi_field_validator(value: str) -> ABI:
    if value.endswith(".json"):
        with open(value) as f:
            value = f.read()

    try:
        json.loads(value)  # Test if it's valid JSON content.
        return ABI(value)
    except json.decoder.JSONDecodeError:
        raise ValueError(f"Invalid ABI: {value}")


def _log_sequencing_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Sequencing conflict on attempt {retry_state.attempt_number}, retrying once with a fresh nonce: {exception}"
    )


class ContractBaseClass(BaseModel):
    """
    Base class holding the basic requirements and tools used for every contract.

    Every read goes through `call`, every state change through `send` (or `send_no_wait`),
    so there is exactly one place that talks to the ledger and one place that recovers from nonce conflicts.
    """

    abi: ABI
    address: ChecksumAddress

    _abi_field_validator = field_validator("abi", mode="before")(abi_field_validator)
    # Holds values that don't change after the first read, like `symbol` or `decimals` of an ERC-20 token.
    _cache: dict[str, t.Any] = {}

    def get_web3_contract(self, web3: Web3 | None = None) -> Web3Contract:
        web3 = web3 or self.get_web3()
        return web3.eth.contract(address=self.address, abi=self.abi)

    def call(
        self,
        function_name: str,
        function_params: t.Optional[list[t.Any] | dict[str, t.Any]] = None,
        web3: Web3 | None = None,
        call_params: t.Optional[TxParams] = None,
    ) -> t.Any:
        """
        Used for reading from the contract.
        """
        web3 = web3 or self.get_web3()
        try:
            return call_function_on_contract(
                web3=web3,
                contract_address=self.address,
                contract_abi=self.abi,
                function_name=function_name,
                function_params=function_params,
                call_params=call_params,
            )
        except Exception as e:
            logger.error(
                f"Reading `{function_name}` on {self.address} with {function_params} failed: {summarize_error(e)}"
            )
            raise

    def _with_sequencing_retry(
        self,
        sender: t.Callable[[], T],
        function_name: str,
        function_params: t.Any,
        prevent_retry: bool,
    ) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(1 if prevent_retry else 2),
            retry=retry_if_exception_type(SequencingConflict),
            before_sleep=_log_sequencing_retry,
            reraise=True,
        )
        try:
            return retrying(sender)
        except Exception as e:
            logger.error(
                f"Transaction `{function_name}` on {self.address} with {function_params} failed: {summarize_error(e)}"
            )
            raise

    def send(
        self,
        identity: SigningIdentity,
        function_name: str,
        function_params: t.Optional[list[t.Any] | dict[str, t.Any]] = None,
        tx_params: t.Optional[TxParams] = None,
        timeout: int | None = None,
        web3: Web3 | None = None,
        prevent_retry: bool = False,
    ) -> TxReceipt:
        """
        Used for changing a state (writing) to the contract. Waits for the receipt and checks its status.
        Without an explicit `timeout`, the wait is bounded by `TradingConfig.RECEIPT_TIMEOUT` seconds.
        """
        web3 = web3 or self.get_web3()
        timeout = timeout if timeout is not None else TradingConfig().RECEIPT_TIMEOUT
        logger.info(
            f"Sending `{function_name}` on {self.address} as {identity} with {function_params}."
        )
        return self._with_sequencing_retry(
            lambda: send_function_on_contract_tx(
                web3=web3,
                contract_address=self.address,
                contract_abi=self.abi,
                identity=identity,
                function_name=function_name,
                function_params=function_params,
                tx_params=tx_params,
                timeout=timeout,
            ),
            function_name=function_name,
            function_params=function_params,
            prevent_retry=prevent_retry,
        )

    def send_no_wait(
        self,
        identity: SigningIdentity,
        function_name: str,
        function_params: t.Optional[list[t.Any] | dict[str, t.Any]] = None,
        tx_params: t.Optional[TxParams] = None,
        web3: Web3 | None = None,
        prevent_retry: bool = False,
    ) -> HexBytes:
        """
        Submits the transaction and returns its hash without waiting for the confirmation.
        """
        web3 = web3 or self.get_web3()
        logger.info(
            f"Sending `{function_name}` on {self.address} as {identity} with {function_params}, without waiting for the receipt."
        )
        return self._with_sequencing_retry(
            lambda: send_function_on_contract_tx_no_wait(
                web3=web3,
                contract_address=self.address,
                contract_abi=self.abi,
                identity=identity,
                function_name=function_name,
                function_params=function_params,
                tx_params=tx_params,
            ),
            function_name=function_name,
            function_params=function_params,
            prevent_retry=prevent_retry,
        )

    def send_with_value(
        self,
        identity: SigningIdentity,
        function_name: str,
        amount_wei: Wei,
        function_params: t.Optional[list[t.Any] | dict[str, t.Any]] = None,
        tx_params: t.Optional[TxParams] = None,
        timeout: int | None = None,
        web3: Web3 | None = None,
    ) -> TxReceipt:
        """
        Used for changing a state (writing) to the contract, including sending chain's native currency.
        """
        return self.send(
            identity=identity,
            function_name=function_name,
            function_params=function_params,
            tx_params={"value": amount_wei, **(tx_params or {})},
            timeout=timeout,
            web3=web3,
        )

    def invoke(
        self,
        function_name: str,
        *args: t.Any,
        is_read_only: bool = False,
        identity: SigningIdentity | None = None,
        skip_confirmation: bool = False,
        prevent_retry: bool = False,
        web3: Web3 | None = None,
    ) -> t.Any:
        """
        Single entry point for a ledger call, dispatching to `call`, `send` or `send_no_wait`.
        Mutations are signed by the operator unless an identity is given.
        """
        if is_read_only:
            return self.call(function_name, list(args), web3=web3)

        identity = identity or self.default_identity()
        if skip_confirmation:
            return self.send_no_wait(
                identity=identity,
                function_name=function_name,
                function_params=list(args),
                web3=web3,
                prevent_retry=prevent_retry,
            )
        return self.send(
            identity=identity,
            function_name=function_name,
            function_params=list(args),
            web3=web3,
            prevent_retry=prevent_retry,
        )

    def get_event_from_receipt(
        self,
        receipt: TxReceipt,
        event_name: str,
        web3: Web3 | None = None,
    ) -> list[EventData]:
        event_abis = [
            item
            for item in json.loads(self.abi)
            if item.get("type") == "event" and item.get("name") == event_name
        ]
        if not event_abis:
            raise EventNotFound(
                f"Event `{event_name}` isn't part of the ABI of {self.__class__.__name__}."
            )

        topic = HexBytes(event_abi_to_log_topic(event_abis[0]))
        event = self.get_web3_contract(web3).events[event_name]()
        return [
            event.process_log(log)
            for log in receipt["logs"]
            if log["topics"] and HexBytes(log["topics"][0]) == topic
        ]

    @classmethod
    def default_identity(cls) -> SigningIdentity:
        return AccountProvider().operator()

    @classmethod
    def get_web3(cls) -> Web3:
        return LedgerConfig().get_web3()


class ContractERC20BaseClass(ContractBaseClass):
    """
    Contract base class extended by ERC-20 standard methods.
    """

    abi: ABI = abi_field_validator(os.path.join(ABIS_DIR, "erc20.abi.json"))

    def symbol(self, web3: Web3 | None = None) -> str:
        symbol: str = self.call("symbol", web3=web3)
        return symbol

    def symbol_cached(self, web3: Web3 | None = None) -> str:
        if "symbol" not in self._cache:
            self._cache["symbol"] = self.symbol(web3=web3)
        value: str = self._cache["symbol"]
        return value

    def decimals(self, web3: Web3 | None = None) -> int:
        decimals: int = self.call("decimals", web3=web3)
        return decimals

    def decimals_cached(self, web3: Web3 | None = None) -> int:
        if "decimals" not in self._cache:
            self._cache["decimals"] = self.decimals(web3=web3)
        value: int = self._cache["decimals"]
        return value

    def allowance(
        self,
        owner: ChecksumAddress,
        for_address: ChecksumAddress,
        web3: Web3 | None = None,
    ) -> Wei:
        allowance_for_user: int = self.call(
            "allowance", function_params=[owner, for_address], web3=web3
        )
        return Wei(allowance_for_user)

    def approve(
        self,
        identity: SigningIdentity,
        for_address: ChecksumAddress,
        amount_wei: Wei,
        tx_params: t.Optional[TxParams] = None,
        web3: Web3 | None = None,
    ) -> TxReceipt:
        return self.send(
            identity=identity,
            function_name="approve",
            function_params=[
                for_address,
                amount_wei,
            ],
            tx_params=tx_params,
            web3=web3,
        )

    def balanceOf(self, for_address: ChecksumAddress, web3: Web3 | None = None) -> Wei:
        balance = Wei(self.call("balanceOf", [for_address], web3=web3))
        return balance


class ContractDepositableWrapperERC20BaseClass(ContractERC20BaseClass):
    """
    ERC-20 standard base class extended for wrapper tokens (WETH9-like), where native currency can be deposited 1:1.
    """

    abi: ABI = abi_field_validator(
        os.path.join(ABIS_DIR, "depositablewrapper_erc20.abi.json")
    )

    def deposit(
        self,
        identity: SigningIdentity,
        amount_wei: Wei,
        tx_params: t.Optional[TxParams] = None,
        web3: Web3 | None = None,
    ) -> TxReceipt:
        return self.send_with_value(
            identity=identity,
            function_name="deposit",
            amount_wei=amount_wei,
            tx_params=tx_params,
            web3=web3,
        )


def contract_implements_function(
    contract_address: ChecksumAddress,
    function_name: str,
    web3: Web3,
    function_arg_types: list[str] | None = None,
) -> bool:
    function_signature = f"{function_name}({','.join(function_arg_types or [])})"
    function_selector = Web3.to_hex(Web3.keccak(text=function_signature)[0:4])[2:]
    bytecode = get_contract_code(web3, contract_address).hex()
    return function_selector in bytecode


def init_collateral_token_contract(
    address: ChecksumAddress, web3: Web3 | None = None
) -> ContractERC20BaseClass:
    """
    Checks if the given contract is a Depositable ERC-20 or a plain ERC-20 and returns the appropriate class instance.
    Throws `UnsupportedCollateral` if there is no contract at the address, or it's neither of them.
    """
    web3 = web3 or LedgerConfig().get_web3()

    if get_contract_code(web3, address).is_empty:
        raise UnsupportedCollateral(f"There is no contract deployed at {address}.")

    elif contract_implements_function(address, "deposit", web3=web3):
        return ContractDepositableWrapperERC20BaseClass(address=address)

    elif contract_implements_function(
        address, "balanceOf", web3=web3, function_arg_types=["address"]
    ):
        return ContractERC20BaseClass(address=address)

    else:
        raise UnsupportedCollateral(
            f"Contract at {address} is not a supported collateral token."
        )
