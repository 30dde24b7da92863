"""
Bounded remote calls.

Every call that leaves the process goes through bounded() so a hung store
or platform can never stall a reconciliation (and, through it, starve the
reconciliations of other clusters). A timeout becomes the error kind the
caller's retry policy understands.
"""

import asyncio
from typing import Awaitable, TypeVar

from escluster_core.errors import OperatorError, TransientError

T = TypeVar("T")


async def bounded(
    call: Awaitable[T],
    timeout: float,
    what: str,
    error: type[OperatorError] = TransientError,
) -> T:
    """
    Await a remote call with a hard timeout.

    Args:
        call: The awaitable to run.
        timeout: Seconds before giving up.
        what: Description used in the error message.
        error: Error kind raised on timeout.

    Raises:
        error: If the call does not finish within timeout.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise error(f"{what} timed out after {timeout:.1f}s") from e
