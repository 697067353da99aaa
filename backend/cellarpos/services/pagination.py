# Overview: Offset pagination shared by list endpoints.

from __future__ import annotations

from flask import current_app


def paginate(base_query, page: int | None, per_page: int | None) -> tuple[list, dict]:
    """
    Apply offset pagination to an ordered query.

    Page defaults to 1; per_page defaults to DEFAULT_PAGE_SIZE and is clamped
    to MAX_PAGE_SIZE. Returns (rows, pagination metadata).
    """
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 100)

    per_page = max(1, min(per_page or default_size, max_size))
    page = max(page or 1, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return rows, {
        "page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
