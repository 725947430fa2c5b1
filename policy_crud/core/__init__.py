"""Core Layer — pure validation and planning logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/ or infrastructure/
    - All functions are pure and deterministic; untrusted input in, typed trees/plans out

Design Decisions:
    - Functional core separated from imperative shell: the store and service own all IO
"""
