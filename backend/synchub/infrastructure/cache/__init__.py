from .redis_cache import CacheService, DEFAULT_TTL

__all__ = ["CacheService", "DEFAULT_TTL"]
