from datetime import datetime
from typing import NoReturn, Optional, Type, TypeVar

import pytz

T = TypeVar("T")


def check_not_none(
    value: Optional[T],
    msg: str = "Value shouldn't be None.",
    exp: Type[ValueError] = ValueError,
) -> T:
    """
    Utility to remove optionality from a variable.

    Useful for cases like this:

    ```
    config = ContractsConfig()
    ConditionalTokenContract(
        address=check_not_none(config.CONDITIONAL_TOKENS_ADDRESS),  # <-- No more Optional[ChecksumAddress].
    )
    ```
    """
    if value is None:
        should_not_happen(msg=msg, exp=exp)
    return value


def should_not_happen(
    msg: str = "Should not happen.", exp: Type[ValueError] = ValueError
) -> NoReturn:
    """
    Utility function to raise an exception with a message.

    Handy for cases like this:

    ```
    return (
        1 if variable == X
        else 2 if variable == Y
        else should_not_happen(f"Variable {variable} is unknown.")
    )
    ```
    """
    raise exp(msg)


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


def summarize_error(exc: BaseException, max_length: int = 200) -> str:
    """
    One-line, user-facing reason of a failure. Node errors can be huge dicts, so they are truncated.
    """
    message = " ".join(str(exc).split()) or type(exc).__name__
    if len(message) > max_length:
        message = message[: max_length - 3] + "..."
    return f"{type(exc).__name__}: {message}"
