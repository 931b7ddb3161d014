import typing as t
from decimal import Decimal


class LedgerCallFailed(RuntimeError):
    """
    A contract call or transaction failed. Carries enough context to reproduce it.
    """

    def __init__(
        self,
        message: str,
        function_name: str | None = None,
        target: str | None = None,
        function_params: t.Any = None,
    ) -> None:
        super().__init__(message)
        self.function_name = function_name
        self.target = target
        self.function_params = function_params


class SequencingConflict(LedgerCallFailed):
    """
    The transaction was rejected because of its nonce (already used, or replaced by a pending one).
    """


class EventNotFound(ValueError):
    pass


class UnsupportedCollateral(ValueError):
    pass


class InvalidOutcome(ValueError):
    pass


class InvalidTradeAmounts(InvalidOutcome):
    pass


class InvalidTruenessVector(ValueError):
    pass


class ConditionAlreadyResolved(ValueError):
    pass


class InsufficientFunds(ValueError):
    def __init__(self, shortfall: Decimal, cost: Decimal, symbol: str) -> None:
        super().__init__(
            f"Insufficient funds! Your purchase may cost {cost:.3f} {symbol}. "
            f"You need {shortfall:.3f} {symbol} more which exceeds your current balance!"
        )
        self.shortfall = shortfall
        self.cost = cost
        self.symbol = symbol


class VariantNotImplemented(NotImplementedError):
    """
    Raised for market-maker variants and oracle types that exist as a tag but have no implementation.
    """
