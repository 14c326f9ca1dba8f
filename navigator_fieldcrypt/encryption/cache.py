"""
Request-scoped cache of derived subkeys.

A cache lives for one unit of work (one request, one batch job). It is
either passed explicitly to the manager or bound to the current thread or
task with ``request_cache()``, which drains and wipes it when the block
exits, including on error. Never share one cache between concurrent units
of work.

Example::

    with request_cache():
        for record in records:
            manager.decrypt(record.envelope, record.context)
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Callable, Optional
from collections.abc import Iterator

from ..exceptions import EncryptionError

if TYPE_CHECKING:
    from .derivation import DerivedSubkey

logger = logging.getLogger("navigator.fieldcrypt")

# (algorithm, key_version, master key fingerprint, canonical context)
CacheKey = tuple[str, str, str, str]

_active_cache: ContextVar[Optional["RequestKeyCache"]] = ContextVar(
    "navigator_fieldcrypt_key_cache", default=None
)


class CacheEntry:
    __slots__ = ("subkey", "refcount")

    def __init__(self, subkey: "DerivedSubkey") -> None:
        self.subkey = subkey
        self.refcount = 0


class RequestKeyCache:
    """Derived subkeys keyed by algorithm, key version, master key and context."""

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._closed = False
        self.hits = 0
        self.misses = 0

    def acquire(
        self,
        key: CacheKey,
        factory: Callable[[], "DerivedSubkey"],
    ) -> "DerivedSubkey":
        """Return the cached subkey for ``key``, deriving it on first use.

        Raises:
            EncryptionError: if the cache scope has already ended.
        """
        if self._closed:
            raise EncryptionError("Key cache used after its scope ended")
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(factory())
            self._entries[key] = entry
            self.misses += 1
        else:
            self.hits += 1
        entry.refcount += 1
        return entry.subkey

    def refcount(self, key: CacheKey) -> int:
        entry = self._entries.get(key)
        return entry.refcount if entry else 0

    def drain(self) -> int:
        """Wipe every cached subkey and close the cache."""
        count = len(self._entries)
        for entry in self._entries.values():
            entry.subkey.wipe()
        self._entries.clear()
        self._closed = True
        return count

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __repr__(self) -> str:
        return (
            f"<RequestKeyCache entries={len(self._entries)} "
            f"hits={self.hits} misses={self.misses} closed={self._closed}>"
        )


def active_cache() -> Optional[RequestKeyCache]:
    """Cache bound to the current thread/task by ``request_cache()``, if any."""
    return _active_cache.get()


@contextmanager
def request_cache() -> Iterator[RequestKeyCache]:
    """Bind a fresh key cache to the current context for the duration of a block."""
    cache = RequestKeyCache()
    token = _active_cache.set(cache)
    try:
        yield cache
    finally:
        _active_cache.reset(token)
        wiped = cache.drain()
        logger.debug(
            "Request key cache closed: %d subkey(s) wiped, %d hit(s)",
            wiped, cache.hits,
        )
