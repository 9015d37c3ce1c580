"""
SLA Engine
Blueprint registry.
"""

from flask import request


def limit_arg(default_limit=100, max_limit=1000):
    """Read the ``limit`` query parameter, clamped to 1..max_limit."""
    try:
        limit = int(request.args.get("limit", default_limit))
    except (ValueError, TypeError):
        limit = default_limit
    return max(1, min(limit, max_limit))
