import typing as t
from pathlib import Path

import pytest
from web3 import Web3

from lmsr_market_tooling.markets.data_models import PredictionMarket
from lmsr_market_tooling.service import PredictionMarketService
from tests.fake_ledger import FakeLedger
from tests.utils import build_service


@pytest.fixture
def web3() -> Web3:
    # Never connected to, every ledger call is answered by the fake ledger.
    return Web3(Web3.HTTPProvider("http://127.0.0.1:8545"))


@pytest.fixture
def fake_ledger() -> t.Generator[FakeLedger, None, None]:
    with FakeLedger().installed() as ledger:
        yield ledger


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "markets.json"


@pytest.fixture
def service(
    fake_ledger: FakeLedger, store_path: Path, web3: Web3
) -> PredictionMarketService:
    return build_service(fake_ledger, store_path, web3)


@pytest.fixture
def binary_market(service: PredictionMarketService) -> PredictionMarket:
    return service.create_market(
        "Will it rain tomorrow?", ["Yes", "No"], initial_liquidity=1
    )
