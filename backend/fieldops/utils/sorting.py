from __future__ import annotations
from flask import abort


def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker, default=None):
    """Comma-separated sort keys, '-' prefix for descending, e.g. `-priority,created_at`.

    Unknown keys abort with 400. `default` (a list of clauses) applies when no sort is given;
    the tie breaker is always appended so paging is stable.
    """
    if not sort_expr:
        return query.order_by(*(default or []), tie_breaker.asc())
    clauses = []
    for raw in sort_expr.split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
