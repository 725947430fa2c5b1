"""Infrastructure Layer — database sessions, SQL compilation, logging.

Invariants:
    - Every SQLAlchemy failure is mapped to InternalError before leaving this layer

Design Decisions:
    - The store implements the core CrudStore protocol; the service never sees SQL
"""
