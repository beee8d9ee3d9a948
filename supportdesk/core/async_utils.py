from __future__ import annotations

from typing import Callable, TypeVar

import anyio
from sqlalchemy.orm import sessionmaker

T = TypeVar("T")


async def run_in_session(
    session_factory: sessionmaker,
    func: Callable[..., T],
    *args: object,
    **kwargs: object,
) -> T:
    """
    Run a synchronous store call in a worker thread with its own session.

    - The session is opened and closed inside the worker thread.
    - Keeps blocking database I/O off the event loop.
    - Returned ORM objects are detached; only already-loaded attributes are safe to read.
    """

    def _runner() -> T:
        with session_factory() as db:
            return func(db, *args, **kwargs)

    return await anyio.to_thread.run_sync(_runner)
