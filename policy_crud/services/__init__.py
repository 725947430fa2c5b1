"""Services Layer — per-entity orchestration of the core validators and the store.

Invariants:
    - One CrudService per entity, read-only after construction
"""
