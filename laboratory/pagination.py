import math

DEFAULT_LIMIT = 20
MAX_LIMIT = 100
CATALOG_MAX_LIMIT = 10000


def _int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def build_pagination(params, max_limit=MAX_LIMIT):
    """(page, limit) from query params. Missing, zero or junk values fall back to defaults."""
    page = max(_int(params.get('page')) or 1, 1)
    limit = min(max(_int(params.get('limit')) or DEFAULT_LIMIT, 1), max_limit)
    return page, limit


def paginate(queryset, params, serialize, max_limit=MAX_LIMIT):
    page, limit = build_pagination(params, max_limit)
    total = queryset.count()
    offset = (page - 1) * limit
    return {
        'items': [serialize(obj) for obj in queryset[offset:offset + limit]],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'totalPages': math.ceil(total / limit) or 1,
        },
    }
