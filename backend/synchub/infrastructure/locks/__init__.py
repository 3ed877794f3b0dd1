from .redis_lease import RedisLease

__all__ = ["RedisLease"]
