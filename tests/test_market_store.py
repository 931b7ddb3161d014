from pathlib import Path

from lmsr_market_tooling.gtypes import OutcomeStr
from lmsr_market_tooling.market_store import MarketStore
from lmsr_market_tooling.tools.utils import utcnow
from tests.utils import build_market


def test_empty_store(store_path: Path) -> None:
    store = MarketStore(store_path)
    assert store.find_all() == []
    assert store.get_recent() is None

    store_path.write_text("")
    assert store.find_all() == []


def test_update_and_find(store_path: Path) -> None:
    store = MarketStore(store_path)
    first, second = build_market("first"), build_market("second")
    store.update(first, new_market=True)
    store.update(second, new_market=True)

    assert [m.address for m in store.find_all()] == [first.address, second.address]
    assert store.get_recent() == second
    assert store.find(first.address.lower()) == first
    assert store.find(build_market("unknown").address) is None

    first.closed_at = utcnow()
    markets = store.update(first)
    assert len(markets) == 2
    found = store.find(first.address)
    assert found is not None and found.closed_at == first.closed_at


def test_update_not_stored_market_appends(store_path: Path) -> None:
    store = MarketStore(store_path)
    store.update(build_market("first"))
    assert len(store.find_all()) == 1


def test_sub_markets_are_updated_in_place(store_path: Path) -> None:
    store = MarketStore(store_path)
    grandchild = build_market("grandchild")
    child = build_market("child", sub_markets={OutcomeStr("No"): grandchild})
    parent = build_market("parent", sub_markets={OutcomeStr("Yes"): child})
    store.update(parent, new_market=True)

    assert store.find(grandchild.address) == grandchild

    grandchild.resolved_at = utcnow()
    store.update(grandchild)

    markets = store.find_all()
    assert len(markets) == 1
    stored_child = markets[0].get_sub_market(OutcomeStr("Yes"))
    assert stored_child is not None
    stored_grandchild = stored_child.get_sub_market(OutcomeStr("No"))
    assert stored_grandchild is not None
    assert stored_grandchild.resolved_at == grandchild.resolved_at


def test_delete_old_ones(store_path: Path) -> None:
    store = MarketStore(store_path)
    markets = [build_market(f"market-{i}") for i in range(5)]
    for market in markets:
        store.update(market, new_market=True)

    kept = store.delete_old_ones(max_length=2)

    assert [m.address for m in kept] == [m.address for m in markets[3:]]
    assert store.find_all() == kept


def test_replace_data_and_clear(store_path: Path) -> None:
    store = MarketStore(store_path)
    store.update(build_market("first"), new_market=True)
    store.replace_data([build_market("other")])
    assert [m.question for m in store.find_all()] == ["Will it rain tomorrow?"]
    assert store.find(build_market("first").address) is None

    store.clear()
    assert not store_path.exists()
    assert store.find_all() == []
