"""Name to id lookup cache shared by the sources of one processor."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Optional[str]]]


class IdLookupCache:
    """
    Maps provider display names to provider ids.

    Keys are (namespace, lower-cased name) pairs, so "flickr_user" and
    "flickr_group" entries never collide. Concurrent lookups of the same name
    share one in-flight request.
    """

    def __init__(self):
        self._ids: Dict[Tuple[str, str], str] = {}
        self._pending: Dict[Tuple[str, str], asyncio.Future] = {}

    @staticmethod
    def _key(namespace: str, name: str) -> Tuple[str, str]:
        return namespace, name.strip().lower()

    def get(self, namespace: str, name: str) -> Optional[str]:
        return self._ids.get(self._key(namespace, name))

    def put(self, namespace: str, name: str, value: str) -> None:
        if not name or not value:
            return
        self._ids[self._key(namespace, name)] = value

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        self._ids.clear()

    async def resolve(self, namespace: str, name: str, fetcher: Fetcher) -> Optional[str]:
        """
        Return the cached id for a name, fetching it once if unknown.

        Args:
            namespace: Lookup namespace (e.g. "flickr_user")
            name: Display name to resolve
            fetcher: Coroutine function returning the id, or None if the name is unknown

        Returns:
            The id, or None if the provider does not know the name
        """
        key = self._key(namespace, name)
        if key in self._ids:
            return self._ids[key]

        pending = self._pending.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        try:
            value = await fetcher(name)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Waiters re-raise it; mark it retrieved for the no-waiter case
            future.exception()
            raise
        else:
            if value:
                self._ids[key] = value
                logger.debug(f"Resolved {namespace} '{name}' to {value}")
            future.set_result(value)
            return value
        finally:
            self._pending.pop(key, None)
