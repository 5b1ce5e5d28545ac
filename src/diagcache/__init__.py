"""diagcache - cache acceleration and asynchronous invalidation.

Read-through caching of per-user and per-entity data in Redis, with a durable
invalidation queue processed in the background so writes never wait on the
cache.
"""

__version__ = "0.1.0"
