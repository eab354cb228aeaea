from typing import Any, Dict, List, Tuple

from django.core.paginator import EmptyPage, Paginator

MAX_PAGE_SIZE = 100


def paginate(queryset, page=1, limit=20) -> Tuple[List[Any], Dict[str, int]]:
    """Slice a queryset into one page; out-of-range pages come back empty."""
    try:
        page = max(1, int(page))
        limit = min(MAX_PAGE_SIZE, max(1, int(limit)))
    except (TypeError, ValueError):
        page, limit = 1, 20

    paginator = Paginator(queryset, limit)
    try:
        items = list(paginator.page(page).object_list)
    except EmptyPage:
        items = []

    return items, {
        "page": page,
        "limit": limit,
        "total": paginator.count,
        "pages": paginator.num_pages,
    }
