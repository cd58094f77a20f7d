"""Small asyncio helpers."""

import asyncio
from typing import Awaitable, Set


async def wait_first(*aws: Awaitable) -> Set[asyncio.Future]:
    """Wait until the first of ``aws`` completes and cancel the rest.

    Returns the set of completed futures. The losers are cancelled even if
    the caller itself is cancelled while waiting.
    """
    futures = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(futures, return_when=asyncio.FIRST_COMPLETED)
        return done
    finally:
        for fut in futures:
            if not fut.done():
                fut.cancel()
