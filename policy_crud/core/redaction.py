"""Field Redaction — prunes forbidden and unselected properties from outbound records.

Invariants:
    - Paths are dotted and list-transparent: "posts.comments.secret" applies under
      every post and every comment
    - Forbidden pruning runs AFTER selection, so select.only cannot re-expose a forbidden path
    - select.only keeps a property when its path equals, is an ancestor of, or is a
      descendant of a listed path; the id field is always kept
    - Missing paths are no-ops; pruning is idempotent
    - Records are mutated in place and returned

Design Decisions:
    - One depth-first walker driven by a predicate: forbidden, only and except differ only
      in which paths they drop
    - Forbidden patterns may be compiled regexes, matched with fullmatch against the dotted
      path (ADR: server config can forbid families like r"posts\\..*\\.internal_.*")
"""

import re
from typing import Any, Callable

ForbiddenPath = str | re.Pattern[str]


def prune_record(
    record: Any,
    forbidden_paths: list[ForbiddenPath],
    select_only: list[str] | None = None,
    select_except: list[str] | None = None,
    id_field: str = "id",
) -> Any:
    if select_only:
        _prune(record, "", _outside_selection(select_only, id_field))
    elif select_except:
        excluded = set(select_except)
        _prune(record, "", excluded.__contains__)

    if forbidden_paths:
        _prune(record, "", _matches_forbidden(forbidden_paths))
    return record


def _prune(node: Any, prefix: str, should_drop: Callable[[str], bool]) -> None:
    if isinstance(node, list):
        for item in node:
            _prune(item, prefix, should_drop)
        return
    if not isinstance(node, dict):
        return

    for key in list(node):
        path = f"{prefix}.{key}" if prefix else key
        if should_drop(path):
            del node[key]
        else:
            _prune(node[key], path, should_drop)


def _outside_selection(only: list[str], id_field: str) -> Callable[[str], bool]:
    selected = set(only)

    def drop(path: str) -> bool:
        if path.rsplit(".", 1)[-1] == id_field:
            return False
        for kept in selected:
            if path == kept or kept.startswith(path + ".") or path.startswith(kept + "."):
                return False
        return True

    return drop


def _matches_forbidden(patterns: list[ForbiddenPath]) -> Callable[[str], bool]:
    exact = {p for p in patterns if isinstance(p, str)}
    regexes = [p for p in patterns if isinstance(p, re.Pattern)]

    def drop(path: str) -> bool:
        return path in exact or any(r.fullmatch(path) for r in regexes)

    return drop
