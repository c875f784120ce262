"""
RFP Platform
Blueprint registry.
"""

from flask import request


def paginate_query(query, default_limit=50, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def pagination_args(default_limit=50, max_limit=500):
    """(limit, offset) from the query string, for services that paginate themselves."""
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset
