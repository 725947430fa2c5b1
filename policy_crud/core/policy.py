"""Policy Injection — ANDs a server-authored predicate into the client's query descriptor.

Invariants:
    - An empty/falsy predicate is a configuration error: it would silently become a no-op
      AND branch and disable the access check
    - Injected shape is always {"AND": [predicate, client_where]}; the predicate is first
    - Injection runs before any allowlist validation; the predicate is trusted, the client
      branch is not (the service validates AND[1] against the allowlist, AND[0] structurally)
    - Only the where key is touched; every other descriptor key passes through

Design Decisions:
    - Re-serialize to a JSON string: the boundary hands the descriptor on exactly as a client
      would have sent it, so the service has one parse path
    - must_match_value validates its target at construction, not per request (ADR: fail fast)
"""

import json
from typing import Any, Callable

from policy_crud.core.errors import ConfigurationError, CrudValidationError

POLICY_BRANCH = 0
CLIENT_BRANCH = 1


def parse_descriptor(raw: str | dict | None) -> dict:
    """Parse a raw descriptor into a fresh dict. None/empty string -> {}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        raise CrudValidationError("Query descriptor is not valid JSON")
    if not isinstance(parsed, dict):
        raise CrudValidationError("Query descriptor must be a JSON object")
    return parsed


def inject_policy(raw_descriptor: str | dict | None, predicate: dict) -> str:
    if not predicate:
        raise ConfigurationError("Policy predicate may not be empty")

    descriptor = parse_descriptor(raw_descriptor)
    descriptor["where"] = {"AND": [predicate, descriptor.get("where") or {}]}
    return json.dumps(descriptor)


def split_policy_where(where: Any) -> tuple[dict, Any]:
    """Return (trusted predicate, client where) from an injected where."""
    branches = where.get("AND") if isinstance(where, dict) and len(where) == 1 else None
    if not isinstance(branches, list) or len(branches) != 2:
        raise CrudValidationError("Policy-scoped query lost its injected filter")
    return branches[POLICY_BRANCH], branches[CLIENT_BRANCH]


def create_where_object(path: str, value: Any) -> dict:
    """Dotted attribute path -> nested filter: "author.id" -> {"author": {"id": value}}."""
    where: Any = value
    for segment in reversed(path.split(".")):
        where = {segment: where}
    return where


def must_match_value(
    entity_attribute_path: str, target_value: Any,
) -> Callable[..., dict]:
    """Policy provider restricting every query to records where path == target_value.

    Falsy targets are refused: a None target would turn into an IS NULL filter and an
    empty string is almost always a missing value upstream.
    """
    if not target_value:
        raise ConfigurationError(
            "must_match_value policy: targetValue may not be a falsy value",
        )
    predicate = create_where_object(entity_attribute_path, target_value)

    def provide(*_args: Any) -> dict:
        return predicate

    return provide
