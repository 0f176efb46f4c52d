from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable


@dataclass(frozen=True)
class Settled:
    ok: bool
    value: Any = None
    error: BaseException | None = None

    def value_or(self, default: Any) -> Any:
        return self.value if self.ok else default


async def settle_all(tasks: dict[str, Awaitable[Any]]) -> dict[str, Settled]:
    """Await every task concurrently and report each outcome by key.

    Individual failures are captured in the result map instead of being
    raised, so the caller always gets one entry per key.
    """
    keys = list(tasks)
    results = await asyncio.gather(*(tasks[k] for k in keys), return_exceptions=True)
    out: dict[str, Settled] = {}
    for key, result in zip(keys, results):
        if isinstance(result, BaseException):
            out[key] = Settled(ok=False, error=result)
        else:
            out[key] = Settled(ok=True, value=result)
    return out
