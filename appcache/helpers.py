from typing import Any, Awaitable, Callable, Optional, Union

from .cache import CacheManager
from .schemas import CacheOptions


def create_cache_key(*parts: Union[str, int]) -> str:
    return ":".join(str(part) for part in parts)


def with_cache(
    cache: CacheManager,
    fn: Callable[..., Awaitable[Any]],
    key_generator: Callable[..., str],
    options: Optional[CacheOptions] = None,
) -> Callable[..., Awaitable[Any]]:
    return cache.wrap_api_call(fn, key_generator, options)


def memoize(
    cache: CacheManager,
    fn: Callable[..., Any],
    key_generator: Optional[Callable[..., str]] = None,
    options: Optional[CacheOptions] = None,
) -> Callable[..., Awaitable[Any]]:
    return cache.memoize(fn, key_generator, options)


def cached(cache: CacheManager, key_generator: Optional[Callable[..., str]] = None, **options):
    """Decorator form of `CacheManager.memoize`.

    Keyword arguments are the `CacheOptions` fields (`ttl`, `tags`,
    `serialize`). The decorated function becomes a coroutine function.

    Examples
    --------
    >>> @cached(cache, ttl=60_000, tags=["packages"])
    ... async def load_package(package_id):
    ...     ...
    """

    cache_options = CacheOptions(**options)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        return cache.memoize(fn, key_generator, cache_options)

    return decorator
