import builtins
import logging
import sys
import typing as t
from enum import Enum

import typer.main
from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict
from pythonjsonlogger import jsonlogger
from tenacity import RetryError

UNPATCHED_PRINT_FN = builtins.print


class LogFormat(str, Enum):
    DEFAULT = "default"
    JSON = "json"


class LogLevel(str, Enum):
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"
    DEBUG = "DEBUG"


class LogConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    LOG_FORMAT: LogFormat = LogFormat.DEFAULT
    LOG_LEVEL: LogLevel = LogLevel.DEBUG


class LedgerJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per line. Receipts and node errors end up in messages, so very long ones are cut.
    """

    MAX_MESSAGE_LENGTH = 50_000

    def add_fields(
        self,
        log_record: dict[str, t.Any],
        record: logging.LogRecord,
        message_dict: dict[str, t.Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        if record.levelname:
            log_record["level"] = log_record["severity"] = record.levelname

        message = str(log_record.get("message", ""))
        if len(message) > self.MAX_MESSAGE_LENGTH:
            log_record["message"] = (
                message[: self.MAX_MESSAGE_LENGTH] + " . . . TRUNCATED . . ."
            )


def json_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(
        LedgerJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s")
    )
    return handler


def exception_details(exc: BaseException) -> BaseException | None:
    """The exception worth reporting, a tenacity `RetryError` is unwrapped to its last attempt."""
    if isinstance(exc, RetryError):
        return exc.last_attempt.exception()
    return exc


def _log_uncaught_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: t.Any
) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logger.opt(exception=(exc_type, exc_value, exc_traceback)).error(
        # Not an f-string, loguru formats the message with its kwargs.
        "Uncaught exception: {details}",
        details=exception_details(exc_value),
    )


def _route_standard_logging(handler: logging.Handler, level: LogLevel) -> None:
    logging.basicConfig(level=level.value, handlers=[handler])
    # web3 and urllib3 create their loggers on import, before we get here.
    for name in list(logging.root.manager.loggerDict):
        existing_logger = logging.getLogger(name)
        existing_logger.setLevel(level.value)
        existing_logger.handlers.clear()
        existing_logger.addHandler(handler)
        existing_logger.propagate = False


def patch_logger(force_patch: bool = False) -> None:
    """
    Configures loguru from `LogConfig`, once per process unless forced.

    In JSON mode, everything (loguru, the standard logging module, uncaught exceptions and `print`) goes
    through a single JSON handler, so the output can be shipped to a log aggregator as-is.
    """
    if getattr(logger, "_patched", False) and not force_patch:
        return
    logger._patched = True  # type: ignore[attr-defined]

    config = LogConfig()
    logger.remove()

    match config.LOG_FORMAT:
        case LogFormat.JSON:
            handler = json_handler()
            _route_standard_logging(handler, config.LOG_LEVEL)
            logger.add(
                handler, level=config.LOG_LEVEL.value, colorize=False, catch=False
            )
            sys.excepthook = _log_uncaught_exception
            typer.main.except_hook = _log_uncaught_exception  # type: ignore[assignment]
            builtins.print = print_using_logger_info  # type: ignore[assignment]
        case LogFormat.DEFAULT:
            logger.add(sys.stderr, level=config.LOG_LEVEL.value)

    logging.captureWarnings(True)
    logger.debug(f"Logging in {config.LOG_FORMAT.value} format at {config.LOG_LEVEL.value}.")


def print_using_logger_info(
    *values: object,
    sep: str = " ",
    end: str = "\n",
    **kwargs: t.Any,
) -> None:
    # loguru formats tracebacks with print; re-entering the logger there deadlocks.
    if any(
        getattr(handler._lock_acquired, "acquired", False)
        for handler in logger._core.handlers.values()  # type: ignore[attr-defined]
    ):
        UNPATCHED_PRINT_FN(*values, sep=sep, end=end, **kwargs)
    else:
        logger.info(sep.join(map(str, values)) + end)


patch_logger()
