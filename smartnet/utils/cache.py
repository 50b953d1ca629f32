"""aiocache для SmartNet: найденные транзакции индексера и метки антиспама."""

from __future__ import annotations

from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from aiocache import SimpleMemoryCache, caches
from aiocache.base import BaseCache

try:
    from aiocache import RedisCache
except (ImportError, AttributeError):  # pragma: no cover - optional dependency
    RedisCache = None  # type: ignore[assignment]

from config.settings import get_settings

TX_ALIAS = "default"
THROTTLE_ALIAS = "throttle"

_configured = False


def configure_cache() -> None:
    """Регистрирует алиасы под выбранный backend (memory/redis).

    Транзакции в индексере неизменны, поэтому живут ``cache.ttl_seconds``.
    Метки антиспама получают TTL при записи.
    """

    global _configured
    if _configured:
        return

    cfg = get_settings().cache
    if cfg.backend == "redis":
        if RedisCache is None:
            raise RuntimeError("CACHE__BACKEND=redis требует aiocache[redis]")
        base: dict[str, Any] = {"cache": RedisCache, **_redis_endpoint(cfg.redis_dsn)}
    else:
        base = {"cache": SimpleMemoryCache}

    caches.set_config(
        {
            TX_ALIAS: {**base, "namespace": "smartnet:tx", "ttl": cfg.ttl_seconds},
            THROTTLE_ALIAS: {**base, "namespace": "smartnet:throttle"},
        }
    )
    _configured = True


def get_cache(alias: str = TX_ALIAS) -> BaseCache:
    configure_cache()
    return caches.get(alias)


async def cached_call(
    key: str,
    ttl: int,
    factory: Callable[[], Awaitable[Any]],
    cache: BaseCache | None = None,
) -> Any:
    """Значение из кеша или результат factory. None не кешируется: промах индексера временный."""

    cache = cache or get_cache()
    value = await cache.get(key)
    if value is not None:
        return value
    value = await factory()
    if value is not None:
        await cache.set(key, value, ttl=ttl)
    return value


def _redis_endpoint(dsn: str | None) -> dict[str, Any]:
    if not dsn:
        raise RuntimeError("CACHE__BACKEND=redis, но CACHE__REDIS_DSN не указан")
    parsed = urlparse(dsn)
    if parsed.scheme != "redis":
        raise ValueError(f"Неподдерживаемая схема Redis DSN: {parsed.scheme}")
    path = parsed.path.lstrip("/")
    return {
        "endpoint": parsed.hostname or "localhost",
        "port": parsed.port or 6379,
        "password": parsed.password,
        "db": int(path) if path.isdigit() else 0,
    }


__all__ = ["THROTTLE_ALIAS", "TX_ALIAS", "cached_call", "configure_cache", "get_cache"]
