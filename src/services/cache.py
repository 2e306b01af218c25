"""In-process cache with explicit tag invalidation.

Entries are stored under a tag tuple such as ``("configuration", "active")``.
Writers invalidate the exact tags they affect, or a tag prefix to drop a
whole family, instead of scanning keys by pattern.
"""

import logging
import threading
from typing import Any

logger = logging.getLogger(__name__)

Tag = tuple[str, ...]


class TaggedCache:
    """Thread-safe mapping from tag tuples to cached values.

    Example:
        >>> cache = TaggedCache()
        >>> cache.set(("configuration", "active"), {"version": 1})
        >>> cache.get(("configuration", "active"))
        {'version': 1}
        >>> cache.invalidate(("configuration",))
        1
        >>> cache.get(("configuration", "active")) is None
        True
    """

    def __init__(self) -> None:
        self._entries: dict[Tag, Any] = {}
        self._lock = threading.Lock()

    def get(self, tag: Tag) -> Any | None:
        with self._lock:
            return self._entries.get(tag)

    def set(self, tag: Tag, value: Any) -> None:
        with self._lock:
            self._entries[tag] = value

    def invalidate(self, tag: Tag) -> int:
        """Drop the entry for ``tag`` and every entry nested under it.

        Args:
            tag: Exact tag or tag prefix.

        Returns:
            int: Number of entries removed.
        """
        with self._lock:
            doomed = [key for key in self._entries if key[: len(tag)] == tag]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries under tag %s", len(doomed), tag)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
