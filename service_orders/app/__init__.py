"""
Orders Service package.

Branch-scoped order reads and writes for optics shop billing, with a
read-through cache in front of the record store:

- app.main: FastAPI app, routes and component wiring.
- app.orders: Order model, scope resolution, query and command services.
- app.cache: Cache key scheme, backends and the best-effort cache adapter.
- app.persistence: Record store interface with in-memory and PostgreSQL stores.
"""
