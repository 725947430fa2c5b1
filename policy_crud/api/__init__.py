"""API Layer — router factory, health probes and error handlers.

Invariants:
    - All endpoints return structured JSON responses

Design Decisions:
    - Thin routes delegate to CrudService
"""
