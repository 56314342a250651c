from __future__ import annotations

import math
from typing import Any

MAX_PAGE_SIZE = 100


def clamp_page(page: int | None, limit: int | None, default_limit: int = 20) -> tuple[int, int]:
    page = max(1, int(page or 1))
    limit = int(limit or default_limit)
    return page, min(max(1, limit), MAX_PAGE_SIZE)


def page_envelope(page: int, limit: int, total: int) -> dict[str, Any]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }
