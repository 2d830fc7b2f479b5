from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Sequence, Union


# PUBLIC_INTERFACE
def pagination_envelope(
    items: Union[Sequence[Any], Iterable[Any]],
    total: int,
    page: int,
    limit: int,
) -> Dict[str, Any]:
    """
    Build a standard pagination envelope for list endpoints.

    Args:
        items: The list/iterable of items for the current page.
        total: Total number of items that match the query (ignoring pagination).
        page: The 1-based page number requested.
        limit: The page size requested.

    Returns:
        Dict with keys: data, page, limit, total, total_pages.
    """
    # Ensure items is materialized as a list (in case an iterator is passed)
    materialized: List[Any] = list(items) if not isinstance(items, list) else items
    limit = max(int(limit), 1)
    return {
        "data": materialized,
        "page": max(int(page), 1),
        "limit": limit,
        "total": int(total),
        "total_pages": math.ceil(int(total) / limit),
    }
