import asyncio
from typing import Any, Callable, Tuple


def completion() -> Tuple[asyncio.Future, Callable[..., None]]:
    """Return a future and the engine callback that settles it.

    The callback rejects the future with a non-None error and otherwise
    resolves it with the result argument. Only the first call counts.
    """
    future = asyncio.get_running_loop().create_future()

    def callback(error: Any = None, result: Any = None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    return future, callback
