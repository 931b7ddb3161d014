from enum import Enum


class MarketType(str, Enum):
    # Note: Keep LMSR first, it's the only market maker with an implementation.
    LMSR = "lmsr"
    FIXED_PRODUCT = "fpmm"
    ORDER_BOOK = "orderbook"


class OracleType(str, Enum):
    CENTRALIZED = "centralized"
    DECENTRALIZED = "decentralized"


class MarketStatus(str, Enum):
    ONGOING = "ongoing"
    CLOSED = "closed"
    RESOLVED = "resolved"
