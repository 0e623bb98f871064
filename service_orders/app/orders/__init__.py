"""
Order domain package: model, tenant scope, read-through queries and
write + invalidation commands.
"""
