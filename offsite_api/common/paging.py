# offsite_api/common/paging.py
from flask import request

DEFAULT_PAGE = 1
DEFAULT_SIZE = 20
MAX_SIZE = 100

def page_limit():
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except (TypeError, ValueError):
        page = DEFAULT_PAGE
    try:
        size = int(request.args.get("size", DEFAULT_SIZE))
        size = max(1, min(size, MAX_SIZE))
    except (TypeError, ValueError):
        size = DEFAULT_SIZE
    return page, size

def paginate(query, serialize):
    """Apply ?page/&size to a query; returns (items, meta) for ok()."""
    page, size = page_limit()
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * size).limit(size).all()
    return [serialize(r) for r in rows], {"page": page, "size": size, "total": total}
