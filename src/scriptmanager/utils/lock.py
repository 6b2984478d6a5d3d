import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger("scriptmanager.lock")

T = TypeVar("T")


def normalize_lock_key(name: str | None) -> str:
    return (name or "").strip().lower()


class ScriptLock:
    """Queue of pending operations per script key.

    An operation on a key starts only after every earlier operation on the same
    key has finished, whether it succeeded or failed. Different keys never wait
    for each other.
    """

    def __init__(self):
        self._tails: dict[str, asyncio.Future] = {}

    def is_locked(self, name: str) -> bool:
        tail = self._tails.get(normalize_lock_key(name))
        return tail is not None and not tail.done()

    async def run(self, name: str, action: Callable[[], Awaitable[T]]) -> T:
        key = normalize_lock_key(name)
        previous = self._tails.get(key)
        done = asyncio.get_running_loop().create_future()
        self._tails[key] = done
        try:
            if previous is not None and not previous.done():
                logger.debug(f"Waiting for pending operation on '{key}'")
                await asyncio.shield(previous)
            return await action()
        finally:
            if previous is not None and not previous.done():
                # Cancelled while queued: release only once the predecessor finishes
                previous.add_done_callback(lambda _: done.done() or done.set_result(None))
            else:
                if not done.done():
                    done.set_result(None)
                if self._tails.get(key) is done:
                    del self._tails[key]
