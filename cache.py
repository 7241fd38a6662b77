import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class Cache(Protocol):
    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryCache:
    """
    进程内的 TTL 缓存，用来暂存已创建的订单。
    多进程部署时换成 Redis 之类的共享存储即可，接口保持 get/set/delete。
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._store[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def cleanup_expired(self) -> int:
        """删除所有过期条目，返回删除数量"""
        with self._lock:
            now = self._clock()
            expired_keys = [k for k, (expires_at, _) in self._store.items() if now >= expires_at]
            for key in expired_keys:
                del self._store[key]
            return len(expired_keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
