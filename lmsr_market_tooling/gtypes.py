import typing as t
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import NewType

from eth_typing.evm import (  # noqa: F401  # Import for the sake of easy importing with others from here.
    Address,
    ChecksumAddress,
    HexAddress,
    HexStr,
)
from hexbytes import HexBytes as HexBytesBase
from pydantic import GetCoreSchemaHandler
from pydantic.types import SecretStr
from pydantic_core import CoreSchema, core_schema
from web3.types import (  # noqa: F401  # Import for the sake of easy importing with others from here.
    TxParams,
    TxReceipt,
)

Wei = NewType("Wei", int)  # Minor units of the collateral token, signed for sells.
OutcomeWei = NewType("OutcomeWei", int)  # Minor units of an outcome (position) token.
PrivateKey = NewType("PrivateKey", SecretStr)
ABI = NewType("ABI", str)
OutcomeStr = NewType("OutcomeStr", str)
ChainID = NewType("ChainID", int)


class HexBytes(HexBytesBase):
    """
    `hexbytes.HexBytes` that pydantic can validate from str/bytes/int and serializes as 0x-prefixed hex.
    """

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: t.Any, handler: GetCoreSchemaHandler
    ) -> CoreSchema:
        return core_schema.no_info_before_validator_function(
            cls._validate,
            core_schema.is_instance_schema(cls),
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda x: x.hex()
            ),
        )

    @classmethod
    def _validate(cls, value: t.Any) -> "HexBytes":
        if isinstance(value, cls):
            return value
        return cls(value)

    def hex(self, *args: t.Any, **kwargs: t.Any) -> str:  # type: ignore[override]
        result = super().hex()
        return result if result.startswith("0x") else f"0x{result}"

    def __repr__(self) -> str:
        return f'HexBytes("{self.hex()}")'

    @property
    def is_empty(self) -> bool:
        return not any(self)


def private_key_type(k: str) -> PrivateKey:
    return PrivateKey(SecretStr(k))


def to_minor_units(amount: int | float | str | Decimal, decimals: int) -> Wei:
    """
    Converts a human-decimal amount (e.g. 1.5 WETH) into the token's integral minor units, handling negative values.
    """
    value = Decimal(str(amount))
    with localcontext() as ctx:
        if value.is_finite():
            # Enough digits for the whole scaled amount, the default context would round it.
            ctx.prec = max(
                ctx.prec, len(value.as_tuple().digits), value.adjusted() + decimals + 2
            )
        scaled = value.scaleb(decimals)
        return Wei(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)))


def from_minor_units(amount: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(str(abs(int(amount)))) + 1)
        return Decimal(int(amount)).scaleb(-decimals)
