from functools import wraps
from typing import Any, Callable

from pydantic import TypeAdapter, ValidationError

from app.cache.layer import CacheLayer


def _from_cache(cache: CacheLayer, adapter: TypeAdapter, key: str, cached):
    """Validate a cached payload; a malformed one counts as an error and is ignored."""
    try:
        return adapter.validate_python(cached)
    except ValidationError as e:
        cache.reject(key, e)
        return None


def async_cached(key_builder: Callable[..., str], schema: Any, ttl: int = None):
    """
    Cache-aside decorator for async service methods. The instance must expose
    a ``cache`` attribute; key_builder receives the same args/kwargs.
    Example:
      @async_cached(lambda self, task_id: f"tasks:{task_id}", schema=TaskRead)
      async def get_task(self, task_id): ...

    Hits and misses both return ``schema`` validated from the JSON form of the
    value, so a cached read is indistinguishable from a fresh one.
    """
    adapter = TypeAdapter(schema)

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            cache: CacheLayer = self.cache
            key = key_builder(self, *args, **kwargs)

            cached = await cache.get(key)
            rejected = False
            if cached is not None:
                result = _from_cache(cache, adapter, key, cached)
                if result is not None:
                    return result
                rejected = True

            async with cache.lock_for(key):
                # Another request may have filled the key while we waited
                cached = None if rejected else await cache.get(key, record=False)
                if cached is not None:
                    result = _from_cache(cache, adapter, key, cached)
                    if result is not None:
                        return result

                value = await fn(self, *args, **kwargs)
                payload = adapter.dump_python(value, mode="json", by_alias=True)
                await cache.set(key, payload, ttl)

            return adapter.validate_python(payload)

        return wrapper

    return decorator


def invalidates(pattern: str):
    """Invalidate ``pattern`` after the wrapped mutation succeeds."""

    def decorator(fn: Callable):
        @wraps(fn)
        async def wrapper(self, *args, **kwargs):
            result = await fn(self, *args, **kwargs)
            await self.cache.invalidate(pattern)
            return result

        return wrapper

    return decorator
