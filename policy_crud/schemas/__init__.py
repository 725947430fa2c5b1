"""Pydantic Schemas — boundary models for query descriptors and per-entity config.

Invariants:
    - Schemas validate shape only; rules that need the entity schema live in core/

Design Decisions:
    - Separate from models: schemas are API contracts, models are persistence
"""
