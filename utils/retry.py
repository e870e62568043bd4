import asyncio
import random
from typing import Any, Awaitable, Callable, Tuple, Type


def exponential_backoff(retries: int, base: float = 0.5, cap: float = 15.0, jitter: bool = True) -> float:
    d = min(cap, base * (2 ** retries))
    if jitter:
        d = random.uniform(0, d)
    return d


async def retry_async(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Callable[[int, BaseException], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Awaits ``fn()`` retrying on ``exceptions`` with exponential backoff."""
    attempt = 0
    while True:
        try:
            return await fn()
        except exceptions as e:
            if attempt >= max_retries:
                raise
            if on_retry:
                on_retry(attempt + 1, e)
            await sleep(exponential_backoff(attempt))
            attempt += 1
