from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from tfxclient.services.bootstrap import ClientContext, build_context

T = TypeVar("T")


def run_with_context(action: Callable[[ClientContext], Awaitable[T]]) -> T:
    """Build a client context, run ``action`` against it and always close it."""

    async def _main() -> Any:
        ctx = await build_context()
        try:
            return await action(ctx)
        finally:
            await ctx.aclose()

    return asyncio.run(_main())
