"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its routes and models,
while reusing platform primitives (auth, RBAC, audit, rate limiting, DB session).
"""
