"""Stream utilities for SSE responses."""

import asyncio
import logging
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

# SSE comment line: ignored by EventSource clients, keeps proxies from timing out.
KEEPALIVE_COMMENT = ": keep-alive\n\n"

_EXHAUSTED = object()


async def _next_item(iterator: AsyncIterator[Any]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


async def keep_alive_generator(
    generator: AsyncIterator[str],
    interval_seconds: float = 15.0,
    ping_payload: str = KEEPALIVE_COMMENT,
) -> AsyncIterator[str]:
    """Wrap an async generator to emit pings if no data arrives within interval.

    The agent can stay silent for a long time while it thinks or runs a
    tool; the ping keeps the HTTP connection from being reaped meanwhile.

    Args:
        generator: The source generator yielding SSE strings
        interval_seconds: How often to ping if silent
        ping_payload: The SSE text to send as ping

    Yields:
        original items from generator, or ping_payload if idle
    """
    iterator = generator.__aiter__()
    pending: asyncio.Task | None = None

    try:
        while True:
            if pending is None:
                pending = asyncio.create_task(_next_item(iterator))

            done, _ = await asyncio.wait({pending}, timeout=interval_seconds)
            if not done:
                yield ping_payload
                continue

            item = pending.result()
            pending = None
            if item is _EXHAUSTED:
                break
            yield item
    except Exception as e:
        logger.error(f"Stream error: {e}")
        raise
    finally:
        if pending is not None and not pending.done():
            pending.cancel()
