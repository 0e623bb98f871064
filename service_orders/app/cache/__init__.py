"""
Cache package for the Orders Service.

Cached views are purged on write, never updated in place. Backends are
swappable (in-process TTL map or Redis); the adapter makes every call best
effort so the cache can never fail a request.
"""
