from typing import Any

from diskcache import Cache


class TTLCache:
    """
    Read-through cache for lookups that may go stale for a few minutes
    (group memberships). Never consult it for capacity decisions.
    """

    def __init__(self, ttl_seconds: int = 300, directory: str | None = None):
        self.ttl_seconds = max(0, int(ttl_seconds))
        self._cache = Cache(directory or None)

    def get(self, key: str) -> Any:
        if self.ttl_seconds == 0:
            return None
        return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.ttl_seconds == 0:
            return
        self._cache.set(key, value, expire=self.ttl_seconds)

    def delete(self, key: str) -> None:
        self._cache.delete(key)

    def clear(self) -> None:
        self._cache.clear()
