"""
Feature modules live under this package.

Each module owns its models, service functions and JSON API blueprint,
and reuses platform primitives (auth, RBAC, audit, storage, DB session).
"""
