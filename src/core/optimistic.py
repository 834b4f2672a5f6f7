"""Optimistic mutation helper.

Every store mutation follows the same shape: snapshot, apply locally,
persist, and on failure restore the snapshot. `OptimisticMutation` is that
shape as an object so create, update and delete share one implementation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")
R = TypeVar("R")


@dataclass
class OptimisticMutation(Generic[S, R]):
    """A local change with its durable write and its undo.

    Attributes:
        label: Used in log lines.
        snapshot: Captures whatever `restore` needs, before `apply` runs.
        apply: Mutates local state synchronously.
        persist: The durable write.
        restore: Undoes `apply` given the snapshot.
        commit: Runs with the durable result after success.
    """

    label: str
    snapshot: Callable[[], S]
    apply: Callable[[], None]
    persist: Callable[[], Awaitable[R]]
    restore: Callable[[S], None]
    commit: Callable[[R], None] | None = None

    def begin(self) -> S:
        """Capture the snapshot and apply the local change."""
        captured = self.snapshot()
        self.apply()
        return captured

    async def settle(self, captured: S, *, reraise: bool = True) -> R | None:
        """Run the durable write; roll back on failure.

        With `reraise=False` the failure is only logged, for writes nobody
        waits on.
        """
        try:
            result = await self.persist()
        except Exception as exc:
            logger.error("%s failed, rolling back optimistic change: %s", self.label, exc)
            self.restore(captured)
            if reraise:
                raise
            return None
        if self.commit is not None:
            self.commit(result)
        return result

    async def run(self) -> R:
        """begin() then settle(), for callers that wait for the durable result."""
        return await self.settle(self.begin())
