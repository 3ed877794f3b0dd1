from .redis_pubsub import RedisBroadcaster

__all__ = ["RedisBroadcaster"]
