import os
import threading
from pathlib import Path
from typing import Union

from pydantic import TypeAdapter

from lmsr_market_tooling.config import StorageConfig
from lmsr_market_tooling.gtypes import ChecksumAddress
from lmsr_market_tooling.loggers import logger
from lmsr_market_tooling.markets.data_models import PredictionMarket

_markets_adapter = TypeAdapter(list[PredictionMarket])


def _replace_in_tree(
    markets: list[PredictionMarket], market: PredictionMarket
) -> bool:
    for i, stored in enumerate(markets):
        if stored.address == market.address:
            markets[i] = market
            return True
        if stored.sub_markets:
            sub_markets = list(stored.sub_markets.values())
            if _replace_in_tree(sub_markets, market):
                stored.sub_markets = dict(zip(stored.sub_markets, sub_markets))
                return True
    return False


class MarketStore:
    """
    Registry of the created markets, kept as a JSON list in a single file, in the order of creation.
    """

    def __init__(self, path: Union[Path, str, None] = None) -> None:
        self.path = Path(path or StorageConfig().MARKETS_FILE).absolute()
        self._lock = threading.Lock()

    def _read(self) -> list[PredictionMarket]:
        if not self.path.exists():
            return []
        content = self.path.read_bytes()
        if not content.strip():
            return []
        return _markets_adapter.validate_json(content)

    def _write(self, markets: list[PredictionMarket]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(_markets_adapter.dump_json(markets, indent=2))
        os.replace(tmp_path, self.path)

    def find_all(self) -> list[PredictionMarket]:
        with self._lock:
            return self._read()

    def find(self, address: ChecksumAddress | str) -> PredictionMarket | None:
        address = address.strip().lower()
        for stored in self.find_all():
            for market in stored.iter_markets():
                if market.address.lower() == address:
                    return market
        return None

    def update(
        self, market: PredictionMarket, new_market: bool = False
    ) -> list[PredictionMarket]:
        """
        Replaces the stored market with the same address, or appends it if it's new (or not stored yet).
        Sub-markets are replaced in place, inside the market they belong to.
        """
        with self._lock:
            markets = self._read()
            if new_market or not _replace_in_tree(markets, market):
                markets.append(market)
            self._write(markets)
        logger.debug(f"Stored {market}.")
        return markets

    def get_recent(self) -> PredictionMarket | None:
        markets = self.find_all()
        return markets[-1] if markets else None

    def delete_old_ones(self, max_length: int | None = None) -> list[PredictionMarket]:
        max_length = max_length if max_length is not None else StorageConfig().MARKETS_MAX_KEPT
        with self._lock:
            markets = self._read()
            if len(markets) <= max_length:
                return markets
            markets = markets[len(markets) - max_length :]
            self._write(markets)
        logger.info(f"Kept only the {max_length} most recent markets.")
        return markets

    def replace_data(self, markets: list[PredictionMarket]) -> None:
        with self._lock:
            self._write(markets)

    def clear(self) -> None:
        with self._lock:
            self.path.unlink(missing_ok=True)
