"""
Guest call executor.

Every call into guest code runs on its own daemon thread and is bridged
back to the event loop as a future. The loop is never blocked by a guest,
so a wall-clock timeout can fire even while a guest spins in a pure
compute loop or sleeps inside a WASI host call. A call that loses the
race keeps its thread until the engine interrupts it; its result is
discarded.

A shared executor (``loop.run_in_executor``) is not used: an abandoned call
sleeping inside WASI holds its worker until the sleep ends, so a bounded
pool would be starved by a handful of timed-out plugins, and its
non-daemon workers would hold up interpreter exit.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def run_guest_call(
    func: Callable[[], T],
    timeout: float,
    name: str = "plugin-guest",
) -> T:
    """
    Run a blocking guest call, racing it against a wall-clock timeout.

    Args:
        func: Zero-argument callable that enters the guest
        timeout: Seconds before the call is abandoned
        name: Thread name, for debugging

    Returns:
        Whatever ``func`` returns

    Raises:
        asyncio.TimeoutError: If the call did not finish in time
        Exception: Whatever ``func`` raised
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future = loop.create_future()

    def _resolve(result: Any, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _post(result: Any, error: BaseException | None) -> None:
        try:
            loop.call_soon_threadsafe(_resolve, result, error)
        except RuntimeError:
            # Loop already closed; nobody is waiting for this result.
            logger.debug("Guest call finished after event loop closed", call=name)

    def _target() -> None:
        try:
            result = func()
        except Exception as e:
            _post(None, e)
        else:
            _post(result, None)

    threading.Thread(target=_target, name=name, daemon=True).start()
    return await asyncio.wait_for(future, timeout=timeout)
