from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

A = TypeVar("A")
B = TypeVar("B")


@dataclass(frozen=True)
class Settled(Generic[B]):
    """Outcome of a single task of `par_map_settled`, either its value or the exception it raised."""

    value: Optional[B] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def par_map(
    items: list[A],
    func: Callable[[A], B],
    max_workers: int = 5,
) -> "list[B]":
    """Applies the function to each element using a thread pool. Awaits for all results, the first failure is raised."""
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(func, item) for item in items]
        return [fut.result() for fut in futures]


def par_map_settled(
    items: list[A],
    func: Callable[[A], B],
    max_workers: int = 5,
) -> "list[Settled[B]]":
    """Like `par_map`, but waits for every task and reports each one separately, nothing is cancelled or rolled back."""
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(func, item) for item in items]
        results: list[Settled[B]] = []
        for fut in futures:
            error = fut.exception()
            results.append(
                Settled(error=error) if error is not None else Settled(value=fut.result())
            )
        return results
