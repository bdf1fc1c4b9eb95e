"""
Feature modules live under this package.

Each module owns its routes and models, and reuses platform primitives
(auth, access checks, audit, storage, DB session).
"""
