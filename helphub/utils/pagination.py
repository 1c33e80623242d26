def parse_page_args(args, default_limit=10, max_limit=100):
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def paginate_query(query, page, limit):
    page = max(int(page) if page else 1, 1)
    limit = max(int(limit) if limit else 10, 1)
    items = query.offset((page - 1) * limit).limit(limit).all()
    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit
    return items, {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_more": page * limit < total,
    }
