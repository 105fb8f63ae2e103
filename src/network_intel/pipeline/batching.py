from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import ValidationError as PydanticValidationError

from ..errors import NetworkIntelError, PartialBatchFailure
from ..graph.util import batched

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors that belong to a single item. Anything else (e.g. the store going away) is
# batch-fatal and propagates.
ITEM_ERRORS = (NetworkIntelError, PydanticValidationError)


@dataclass(slots=True)
class BatchOutcome:
    attempted: int = 0
    succeeded: int = 0
    failed: dict[str, str] = field(default_factory=dict)

    def raise_if_fatal(self, what: str = "items") -> None:
        """Every attempted item failing means the collaborator, not the data, is broken."""
        if self.attempted and not self.succeeded:
            raise PartialBatchFailure(
                f"all {self.attempted} {what} failed", failed=dict(self.failed), attempted=self.attempted
            )

    def as_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": len(self.failed),
            "failed_items": dict(list(self.failed.items())[:20]),
        }


async def run_in_batches(
    items: Iterable[T],
    fn: Callable[[T], Awaitable[Any]],
    *,
    batch_size: int,
    delay_s: float = 0.0,
    key: Callable[[T], str] = str,
    label: str = "item",
) -> BatchOutcome:
    """Run `fn` over `items`, `batch_size` at a time, pausing `delay_s` between chunks."""
    outcome = BatchOutcome()
    for n, chunk in enumerate(batched(items, max(1, int(batch_size)))):
        if n and delay_s > 0:
            await asyncio.sleep(delay_s)
        results = await asyncio.gather(*(fn(x) for x in chunk), return_exceptions=True)
        for item, res in zip(chunk, results):
            outcome.attempted += 1
            if isinstance(res, ITEM_ERRORS):
                k = key(item)
                outcome.failed[k] = f"{type(res).__name__}: {res}"
                logger.warning("%s %s failed: %s", label, k, res)
            elif isinstance(res, BaseException):
                raise res
            else:
                outcome.succeeded += 1
    return outcome
